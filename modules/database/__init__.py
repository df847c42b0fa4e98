from .functions import create_database_resources
