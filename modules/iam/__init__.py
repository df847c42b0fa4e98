from .functions import create_iam_resources, create_irsa_resources
