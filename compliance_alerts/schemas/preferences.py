from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from compliance_alerts.core.constants import CHANNELS

_CHANNEL_FIELDS = ("early_channels", "medium_channels", "high_channels", "critical_channels")


def check_channels(value):
    if value is None:
        return value
    unknown = [item for item in value if item not in CHANNELS]
    if unknown:
        raise ValueError("unsupported channel(s): {}".format(", ".join(unknown)))
    return value


def check_alert_days(value):
    if value is None:
        return value
    return sorted(set(value), reverse=True)


class PreferenceValues(BaseModel):
    early_channels: List[str] = Field(default_factory=list)
    medium_channels: List[str] = Field(default_factory=list)
    high_channels: List[str] = Field(default_factory=list)
    critical_channels: List[str] = Field(default_factory=list)
    alert_days: List[int] = Field(default_factory=list)
    escalation_enabled: bool = True
    escalation_contacts: List[str] = Field(default_factory=list)
    phone_number: Optional[str] = None
    email_override: Optional[str] = None

    @field_validator(*_CHANNEL_FIELDS)
    @classmethod
    def validate_channels(cls, value):
        return check_channels(value)

    @field_validator("alert_days")
    @classmethod
    def validate_alert_days(cls, value):
        return check_alert_days(value)


class PreferenceUpdate(PreferenceValues):
    org_id: str
    user_id: Optional[str] = None


class PreferencePatch(BaseModel):
    org_id: str
    user_id: Optional[str] = None
    early_channels: Optional[List[str]] = None
    medium_channels: Optional[List[str]] = None
    high_channels: Optional[List[str]] = None
    critical_channels: Optional[List[str]] = None
    alert_days: Optional[List[int]] = None
    escalation_enabled: Optional[bool] = None
    escalation_contacts: Optional[List[str]] = None
    phone_number: Optional[str] = None
    email_override: Optional[str] = None

    @field_validator(*_CHANNEL_FIELDS)
    @classmethod
    def validate_channels(cls, value):
        return check_channels(value)

    @field_validator("alert_days")
    @classmethod
    def validate_alert_days(cls, value):
        return check_alert_days(value)


class PreferenceRead(PreferenceValues):
    org_id: str
    user_id: Optional[str] = None
    source: str

    model_config = ConfigDict(from_attributes=True)


class PreferenceSaveResult(BaseModel):
    preferences: PreferenceRead
    reschedule: dict
