from .functions import create_addons_resources
