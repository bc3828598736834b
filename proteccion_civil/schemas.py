"""
Pydantic schemas for the Protección Civil API.

Request bodies accept every field as optional; the handlers decide what is
missing so that an incomplete form gets the API's own 400 envelope instead
of a framework validation error.
"""

from __future__ import annotations

from typing import ClassVar, Optional

from pydantic import BaseModel, ConfigDict, field_validator


class FormPayload(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True, extra="ignore")

    required_fields: ClassVar[tuple[str, ...]] = ()

    def missing_fields(self) -> list[str]:
        """Required fields that are absent, null, empty, zero or false."""
        return [name for name in self.required_fields if not getattr(self, name)]


class BrigadeApplicationPayload(FormPayload):
    required_fields = ("brigada_id", "nombre_completo", "email", "telefono", "motivacion")

    brigada_id: Optional[int] = None
    nombre_completo: Optional[str] = None
    email: Optional[str] = None
    telefono: Optional[str] = None
    n_cuenta: Optional[str] = None
    carrera: Optional[str] = None
    semestre: Optional[str] = None
    experiencia_previa: Optional[str] = None
    motivacion: Optional[str] = None


class CourseEnrollmentPayload(FormPayload):
    required_fields = ("curso_id", "nombre_completo", "email", "telefono", "motivacion")

    curso_id: Optional[int] = None
    nombre_completo: Optional[str] = None
    email: Optional[str] = None
    telefono: Optional[str] = None
    n_cuenta: Optional[str] = None
    carrera: Optional[str] = None
    semestre: Optional[str] = None
    motivacion: Optional[str] = None


class ContactPayload(FormPayload):
    required_fields = ("nombre", "email", "asunto", "mensaje")

    nombre: Optional[str] = None
    email: Optional[str] = None
    telefono: Optional[str] = None
    tipo: Optional[str] = None
    asunto: Optional[str] = None
    mensaje: Optional[str] = None


class EmergencyPayload(FormPayload):
    required_fields = (
        "nombre_solicitante",
        "telefono",
        "tipo_emergencia",
        "ubicacion_detallada",
        "descripcion",
    )

    nombre_solicitante: Optional[str] = None
    telefono: Optional[str] = None
    email: Optional[str] = None
    tipo_emergencia: Optional[str] = None
    nivel_urgencia: Optional[str] = None
    edificio: Optional[str] = None
    piso: Optional[str] = None
    numero_afectados: Optional[int] = None
    ubicacion_detallada: Optional[str] = None
    descripcion: Optional[str] = None

    @field_validator("numero_afectados", mode="before")
    @classmethod
    def _blank_count(cls, value):
        # Forms post an empty string when the count is left blank.
        return None if value in ("", None) else value


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    database: str
    environment: str
