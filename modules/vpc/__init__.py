from .functions import create_vpc_resources
