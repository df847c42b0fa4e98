from .functions import create_eks_resources, create_eks_addons
