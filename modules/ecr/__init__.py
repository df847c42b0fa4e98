from .functions import create_ecr_resources
