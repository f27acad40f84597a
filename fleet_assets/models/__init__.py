from fleet_assets.models.user import User
from fleet_assets.models.organization import Organization, OrganizationMember
from fleet_assets.models.asset import AssetType, AssetSubtype, Asset, AssetUserTag
from fleet_assets.models.asset_event import AssetEvent
from fleet_assets.models.policy import Policy, PolicyRule
from fleet_assets.models.upload import Upload
from fleet_assets.models.job import RecalculationJob

__all__ = [
    "User",
    "Organization",
    "OrganizationMember",
    "AssetType",
    "AssetSubtype",
    "Asset",
    "AssetUserTag",
    "AssetEvent",
    "Policy",
    "PolicyRule",
    "Upload",
    "RecalculationJob",
]
