"""MongoDB shard key advisor package."""

from .api import ShardKeyAdvisorAPI, build_api
from .models import AdvisorConfig
from .service_http import create_app

__all__ = ["AdvisorConfig", "ShardKeyAdvisorAPI", "build_api", "create_app"]

__version__ = "0.1.0"
