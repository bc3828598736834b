"""
HTTP routes for the Protección Civil API.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from proteccion_civil.config import STATISTICS_FALLBACKS
from proteccion_civil.db import (
    BrigadeApplication,
    ContactMessage,
    CourseEnrollment,
    CourseNotFoundError,
    EmergencyReport,
    NoSeatsAvailableError,
    StoreClient,
    StoreError,
    public_dict,
)
from proteccion_civil.dependencies import get_folio_generator, get_store_client
from proteccion_civil.errors import MISSING_FIELDS, QUERY_FAILED, ApiError
from proteccion_civil.folio import FolioGenerator
from proteccion_civil.schemas import (
    BrigadeApplicationPayload,
    ContactPayload,
    CourseEnrollmentPayload,
    EmergencyPayload,
    FormPayload,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _require(payload: FormPayload) -> None:
    if payload.missing_fields():
        raise ApiError(400, MISSING_FIELDS)


def _store_failure(route: str, exc: StoreError, message: str = QUERY_FAILED) -> ApiError:
    logger.error("Error en %s: %s", route, exc)
    return ApiError(500, message, error=str(exc))


# ============ Novedades ============


@router.get("/novedades")
def list_news(store: StoreClient = Depends(get_store_client)):
    try:
        items = store.list_news()
    except StoreError as exc:
        raise _store_failure("/api/novedades", exc)
    return {"success": True, "data": [public_dict(item) for item in items]}


@router.get("/novedades/{news_id}")
def get_news(news_id: str, store: StoreClient = Depends(get_store_client)):
    item = None
    if news_id.isdigit():
        try:
            item = store.get_news(int(news_id))
        except StoreError as exc:
            raise _store_failure("/api/novedades/:id", exc)
    if item is None:
        raise ApiError(404, "Novedad no encontrada")
    return {"success": True, "data": public_dict(item)}


# ============ Brigadas ============


@router.get("/brigadas")
def list_brigades(store: StoreClient = Depends(get_store_client)):
    try:
        brigades = store.list_brigades()
    except StoreError as exc:
        raise _store_failure("/api/brigadas", exc)
    return {"success": True, "data": [public_dict(b) for b in brigades]}


@router.post("/brigadas", status_code=201)
def apply_to_brigade(
    payload: BrigadeApplicationPayload,
    store: StoreClient = Depends(get_store_client),
):
    _require(payload)
    application = BrigadeApplication(
        brigada_id=payload.brigada_id,
        nombre_completo=payload.nombre_completo,
        email=payload.email,
        telefono=payload.telefono,
        n_cuenta=payload.n_cuenta,
        carrera=payload.carrera,
        semestre=payload.semestre,
        experiencia_previa=payload.experiencia_previa,
        motivacion=payload.motivacion,
    )
    try:
        application_id = store.save_brigade_application(application)
    except StoreError as exc:
        raise _store_failure("POST /api/brigadas", exc, "Error al guardar")
    return {
        "success": True,
        "message": "Solicitud enviada exitosamente",
        "solicitud_id": application_id,
    }


# ============ Cursos ============


@router.get("/cursos")
def list_courses(store: StoreClient = Depends(get_store_client)):
    try:
        courses = store.list_courses()
    except StoreError as exc:
        raise _store_failure("/api/cursos", exc)
    return {"success": True, "data": [public_dict(c) for c in courses]}


@router.post("/cursos", status_code=201)
def enroll_in_course(
    payload: CourseEnrollmentPayload,
    store: StoreClient = Depends(get_store_client),
):
    _require(payload)
    enrollment = CourseEnrollment(
        curso_id=payload.curso_id,
        nombre_completo=payload.nombre_completo,
        email=payload.email,
        telefono=payload.telefono,
        n_cuenta=payload.n_cuenta,
        carrera=payload.carrera,
        semestre=payload.semestre,
        motivacion=payload.motivacion,
    )
    try:
        enrollment_id, course_title = store.enroll_in_course(enrollment)
    except CourseNotFoundError:
        raise ApiError(404, "Curso no encontrado")
    except NoSeatsAvailableError:
        raise ApiError(400, "No hay cupo disponible")
    except StoreError as exc:
        raise _store_failure("POST /api/cursos", exc, "Error al inscribir")
    return {
        "success": True,
        "message": "Inscripción confirmada",
        "curso": course_title,
        "inscripcion_id": enrollment_id,
    }


# ============ Documentos ============


@router.get("/documentos")
def list_documents(store: StoreClient = Depends(get_store_client)):
    try:
        documents = store.list_documents()
    except StoreError as exc:
        raise _store_failure("/api/documentos", exc)
    return {"success": True, "data": [public_dict(d) for d in documents]}


# ============ Contacto ============


@router.post("/contacto", status_code=201)
def send_contact_message(
    payload: ContactPayload, store: StoreClient = Depends(get_store_client)
):
    _require(payload)
    message = ContactMessage(
        nombre=payload.nombre,
        email=payload.email,
        telefono=payload.telefono,
        asunto=payload.asunto,
        mensaje=payload.mensaje,
        tipo=payload.tipo or "consulta",
    )
    try:
        message_id = store.save_contact_message(message)
    except StoreError as exc:
        raise _store_failure("/api/contacto", exc, "Error al enviar")
    return {
        "success": True,
        "message": "Mensaje enviado exitosamente. Te responderemos pronto.",
        "mensaje_id": message_id,
    }


# ============ Emergencias ============


@router.post("/emergencias", status_code=201)
def report_emergency(
    payload: EmergencyPayload,
    store: StoreClient = Depends(get_store_client),
    folios: FolioGenerator = Depends(get_folio_generator),
):
    _require(payload)
    level = payload.nivel_urgencia or "media"
    report = EmergencyReport(
        folio=folios.next(),
        nombre_solicitante=payload.nombre_solicitante,
        telefono=payload.telefono,
        email=payload.email,
        ubicacion_detallada=payload.ubicacion_detallada,
        edificio=payload.edificio,
        piso=payload.piso,
        tipo_emergencia=payload.tipo_emergencia,
        nivel_urgencia=level,
        descripcion=payload.descripcion,
        numero_afectados=payload.numero_afectados or 1,
    )
    try:
        report_id = store.save_emergency_report(report)
    except StoreError as exc:
        raise _store_failure("/api/emergencias", exc, "Error al reportar")
    return {
        "success": True,
        "message": "Emergencia reportada. Un equipo ha sido despachado.",
        "folio": report.folio,
        "emergencia_id": report_id,
        "tipo": report.tipo_emergencia,
        "nivel": level,
    }


@router.get("/emergencias")
def list_emergencies(store: StoreClient = Depends(get_store_client)):
    try:
        reports = store.list_emergencies()
    except StoreError as exc:
        raise _store_failure("GET /api/emergencias", exc)
    return {"success": True, "data": [public_dict(r) for r in reports]}


# ============ Estadísticas ============


@router.get("/estadisticas")
def get_statistics(store: StoreClient = Depends(get_store_client)):
    try:
        stats = store.get_statistics()
    except StoreError as exc:
        raise _store_failure("/api/estadisticas", exc)
    data = {
        name: stats.get(name) or fallback
        for name, fallback in STATISTICS_FALLBACKS.items()
    }
    return {"success": True, "data": data}
