from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ClueSettingsDTO(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    path: Optional[str] = None
    environment: Dict[str, Any] = {}
    log_level: Optional[str] = Field(default=None, alias="logLevel")


class PositionDTO(BaseModel):
    line: int
    character: int


class RangeDTO(BaseModel):
    start: PositionDTO
    end: PositionDTO


class DiagnosticDTO(BaseModel):
    range: RangeDTO
    severity: str = "error"
    message: str
    source: str = "clue"


class PublishDiagnosticsDTO(BaseModel):
    uri: str
    diagnostics: List[DiagnosticDTO] = []


class StatusDTO(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str
    is_error: bool = Field(default=False, alias="isError")


class CheckRequest(BaseModel):
    uri: Optional[str] = None


class CheckResponse(BaseModel):
    run_id: int
    target: str
    is_directory: bool
    status: str
    published: List[PublishDiagnosticsDTO] = []
    failures: List[str] = []
    errors: List[str] = []
