# sfsync/sync/objects.py
from typing import Any, Dict, List, Mapping, Tuple

from pydantic import BaseModel, ConfigDict, Field


class ObjectSchema(BaseModel):
    """
    How event fields land on one SObject: payload keys that have a known API
    name are renamed, anything else (custom fields such as Plan__c) passes
    through untouched.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    field_map: Dict[str, str] = Field(default_factory=dict)
    required_create_fields: Tuple[str, ...] = ()

    def api_name(self, key: str) -> str:
        return self.field_map.get(key, key)

    def to_api_fields(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        return {self.api_name(key): value for key, value in data.items()}

    def missing_create_fields(self, data: Mapping[str, Any]) -> List[str]:
        """Mandatory create fields that are absent, null or blank in `data`."""
        mapped = self.to_api_fields(data)
        missing = []
        for field in self.required_create_fields:
            value = mapped.get(field)
            if value is None or (isinstance(value, str) and not value.strip()):
                missing.append(field)
        return missing


CONTACT = ObjectSchema(
    name="Contact",
    field_map={
        "last_name": "LastName",
        "first_name": "FirstName",
        "account_id": "AccountId",
        "email": "Email",
        "mailing_city": "MailingCity",
        "mailing_postal_code": "MailingPostalCode",
        "mailing_country": "MailingCountry",
        "mailing_street": "MailingStreet",
        "mailing_state": "MailingState",
    },
    required_create_fields=("LastName",),
)

OBJECT_SCHEMAS: Dict[str, ObjectSchema] = {CONTACT.name: CONTACT}


def get_object_schema(object_name: str) -> ObjectSchema:
    return OBJECT_SCHEMAS.get(object_name) or ObjectSchema(name=object_name)
