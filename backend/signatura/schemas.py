from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for records that travel as camelCase JSON (storage, QR, API)."""

    model_config = {"alias_generator": to_camel, "populate_by_name": True}

    def to_json_dict(self, **kwargs) -> dict:
        return self.model_dump(mode="json", by_alias=True, **kwargs)


class Permissions(CamelModel):
    can_view: bool = True
    can_print: bool = True
    can_share: bool = True
    can_download: bool = False


# Content actions map onto permission flags.
ACTION_PERMISSIONS = {
    "view": "can_view",
    "print": "can_print",
    "download": "can_download",
    "share": "can_share",
}
