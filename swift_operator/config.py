"""
Operator configuration
Environment driven settings and the default container images applied to
SwiftStorage resources that leave an image field unset.
"""

import logging
import os
from typing import Dict, Mapping, Optional

from pydantic import BaseModel, Field

# ===== Defaults =====
IMAGE_ENV_VARS = {
    "containerImageAccount": "SWIFT_ACCOUNT_IMAGE_URL_DEFAULT",
    "containerImageContainer": "SWIFT_CONTAINER_IMAGE_URL_DEFAULT",
    "containerImageObject": "SWIFT_OBJECT_IMAGE_URL_DEFAULT",
    "containerImageProxy": "SWIFT_PROXY_IMAGE_URL_DEFAULT",
    "containerImageMemcached": "SWIFT_MEMCACHED_IMAGE_URL_DEFAULT",
}

DEFAULT_IMAGES = {
    "containerImageAccount": "quay.io/podified-antelope-centos9/openstack-swift-account:current-podified",
    "containerImageContainer": "quay.io/podified-antelope-centos9/openstack-swift-container:current-podified",
    "containerImageObject": "quay.io/podified-antelope-centos9/openstack-swift-object:current-podified",
    "containerImageProxy": "quay.io/podified-antelope-centos9/openstack-swift-proxy-server:current-podified",
    "containerImageMemcached": "quay.io/podified-antelope-centos9/openstack-memcached:current-podified",
}


class OperatorConfig(BaseModel):
    image_defaults: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_IMAGES))
    resync_interval: float = Field(default=60.0, gt=0)
    ring_wait: float = Field(default=5.0, gt=0)
    metrics_port: int = 8080
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "OperatorConfig":
        """Build the config from ``environ`` (``os.environ`` by default)."""
        env = os.environ if environ is None else environ
        images = {
            field: env.get(var) or DEFAULT_IMAGES[field]
            for field, var in IMAGE_ENV_VARS.items()
        }
        return cls(
            image_defaults=images,
            resync_interval=float(env.get("SWIFT_OPERATOR_RESYNC_INTERVAL", "60")),
            ring_wait=float(env.get("SWIFT_OPERATOR_RING_WAIT", "5")),
            metrics_port=int(env.get("METRICS_PORT", "8080")),
            log_level=env.get("SWIFT_OPERATOR_LOG_LEVEL", "INFO").upper(),
        )

    @property
    def logging_level(self) -> int:
        level = logging.getLevelName(self.log_level)
        return level if isinstance(level, int) else logging.INFO
