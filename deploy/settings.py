"""
Settings for the deployment commands
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional


PROJECT_ROOT = Path(__file__).resolve().parent.parent


@dataclass
class Settings:
    """Values every step needs, resolved once from CLI flags and environment"""

    project_name: str = "gitops-platform"
    environment: str = "dev"
    aws_region: str = "us-west-2"
    work_dir: Path = PROJECT_ROOT
    manifests_dir: Path = PROJECT_ROOT / "k8s-manifests"
    state_bucket: Optional[str] = None
    secrets_provider: Optional[str] = None
    dry_run: bool = False
    wait_timeout: int = 600
    sync_wait: int = 30

    @property
    def cluster_name(self) -> str:
        return f"{self.project_name}-{self.environment}-cluster"

    @property
    def stack_name(self) -> str:
        return self.environment

    @property
    def bucket_name(self) -> str:
        """State bucket, named after project and region unless given"""
        return self.state_bucket or f"{self.project_name}-pulumi-state-{self.aws_region}"

    @property
    def backend_url(self) -> str:
        return f"s3://{self.bucket_name}"
