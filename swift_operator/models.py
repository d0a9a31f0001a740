"""
SwiftStorage resource models
Typed view of the SwiftStorage custom resource: identity, desired spec and
observed status.
"""

from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from swift_operator.swift import STORAGE_KIND, SWIFT_GROUP, SWIFT_VERSION

IMAGE_FIELDS = (
    "containerImageAccount",
    "containerImageContainer",
    "containerImageObject",
    "containerImageProxy",
    "containerImageMemcached",
)


class PasswordSelector(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    admin: str = "SwiftPassword"


class SwiftStorageSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    replicas: int = Field(default=1, ge=0)
    container_image_account: str = Field(alias="containerImageAccount")
    container_image_container: str = Field(alias="containerImageContainer")
    container_image_object: str = Field(alias="containerImageObject")
    container_image_proxy: str = Field(alias="containerImageProxy")
    container_image_memcached: str = Field(alias="containerImageMemcached")
    secret: str = "osp-secret"
    password_selectors: PasswordSelector = Field(default_factory=PasswordSelector, alias="passwordSelectors")
    swift_conf_secret: str = Field(default="swift-conf", alias="swiftConfSecret")
    storage_class: str = Field(default="local-storage", alias="storageClass")
    storage_request: str = Field(default="10Gi", alias="storageRequest")

    @field_validator(
        "container_image_account", "container_image_container", "container_image_object",
        "container_image_proxy", "container_image_memcached", "storage_request",
    )
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v


class SwiftStorageStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conditions: List[Dict[str, Any]] = Field(default_factory=list)
    api_endpoints: Dict[str, str] = Field(default_factory=dict, alias="apiEndpoints")
    ready_count: int = Field(default=0, alias="readyCount")


class SwiftStorage(BaseModel):
    name: str
    namespace: str
    uid: str = ""
    generation: int = 0
    resource_version: Optional[str] = None
    deletion_timestamp: Optional[str] = None
    spec: SwiftStorageSpec
    status: SwiftStorageStatus = Field(default_factory=SwiftStorageStatus)

    @classmethod
    def from_resource(cls, body: Mapping[str, Any],
                      image_defaults: Optional[Mapping[str, str]] = None) -> "SwiftStorage":
        """Parse a raw custom object, filling unset images from ``image_defaults``."""
        meta = body.get("metadata") or {}
        spec = dict(body.get("spec") or {})
        status = {k: v for k, v in (body.get("status") or {}).items() if v is not None}
        for field in IMAGE_FIELDS:
            if not spec.get(field) and image_defaults and image_defaults.get(field):
                spec[field] = image_defaults[field]

        return cls(
            name=meta.get("name", ""),
            namespace=meta.get("namespace", ""),
            uid=meta.get("uid", ""),
            generation=meta.get("generation", 0),
            resource_version=meta.get("resourceVersion"),
            deletion_timestamp=meta.get("deletionTimestamp"),
            spec=SwiftStorageSpec.model_validate(spec),
            status=SwiftStorageStatus.model_validate(status),
        )

    def owner_reference(self) -> Dict[str, Any]:
        return {
            "apiVersion": f"{SWIFT_GROUP}/{SWIFT_VERSION}",
            "kind": STORAGE_KIND,
            "name": self.name,
            "uid": self.uid,
            "controller": True,
            "blockOwnerDeletion": True,
        }
