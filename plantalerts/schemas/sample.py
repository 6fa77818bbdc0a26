from pydantic import BaseModel, ConfigDict, Field


class Sample(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tag_id: str = Field(alias="tagId")
    value: float | None = None
    status_good: bool = Field(True, alias="statusGood")


class TagRule(BaseModel):
    tag_id: str
    device: str
    metric: str
    unit: str = ""
    warn_high: float | None = None
    critical_high: float | None = None
    warn_low: float | None = None
    critical_low: float | None = None
