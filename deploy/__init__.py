"""
Deployment orchestration for the GitOps Platform
Sequences pulumi, aws, kubectl and helm to bring a cluster to a GitOps-managed state
"""

__version__ = "1.0.0"
