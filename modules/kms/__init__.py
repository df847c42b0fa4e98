from .functions import create_kms_resources
