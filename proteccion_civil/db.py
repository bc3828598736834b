"""
Store abstraction for the relational database and an in-memory test implementation.
"""

from __future__ import annotations

import itertools
import logging
import threading
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Protocol, Tuple

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    and_,
    create_engine,
    func,
    select,
    text,
    update,
)
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from proteccion_civil.connection import DEFAULT_RETRY_DELAY_SECONDS, StoreConnection

logger = logging.getLogger(__name__)

NEWS_LIMIT = 10
EMERGENCIES_LIMIT = 50
OPEN_COURSE_STATUSES = ("programado", "inscripciones_abiertas")
CLOSED_EMERGENCY_STATUSES = ("resuelta", "cerrada", "cancelada")
CANCELLED_ENROLLMENT = "cancelada"
PUBLIC_DOCUMENT_CATEGORY = "publico"
STATISTICS_VIEW = "vista_estadisticas_generales"

HIDDEN = {"hidden": True}


class StoreError(Exception):
    """A query or connection failure, carrying the driver's message."""


class CourseNotFoundError(LookupError):
    pass


class NoSeatsAvailableError(Exception):
    pass


def _now() -> datetime:
    return datetime.now(timezone.utc)


def public_dict(record) -> dict:
    """Serialize a record, leaving out fields that are never published."""
    return {
        f.name: getattr(record, f.name)
        for f in fields(record)
        if not f.metadata.get("hidden")
    }


@dataclass
class NewsItem:
    id: int
    titulo: str
    resumen: Optional[str] = None
    contenido: Optional[str] = None
    categoria: Optional[str] = None
    fecha_publicacion: Optional[datetime] = None
    destacado: bool = False
    publicado: bool = field(default=True, metadata=HIDDEN)


@dataclass
class Brigade:
    id: int
    nombre: str
    descripcion: Optional[str] = None
    coordinador: Optional[str] = None
    email_coordinador: Optional[str] = None
    telefono_coordinador: Optional[str] = None
    miembros_activos: int = 0
    requisitos: Optional[str] = None
    imagen_url: Optional[str] = None
    activa: bool = field(default=True, metadata=HIDDEN)


@dataclass
class Course:
    id: int
    titulo: str
    descripcion: Optional[str] = None
    duracion_horas: Optional[int] = None
    cupo_maximo: int = 0
    cupo_disponible: int = 0
    instructor: Optional[str] = None
    modalidad: Optional[str] = None
    fecha_inicio: Optional[date] = None
    fecha_fin: Optional[date] = None
    horario: Optional[str] = None
    costo: Optional[Decimal] = None
    estatus: str = "programado"
    total_inscritos: int = 0


@dataclass
class Document:
    id: int
    titulo: str
    descripcion: Optional[str] = None
    categoria: str = PUBLIC_DOCUMENT_CATEGORY
    tipo_documento: Optional[str] = None
    archivo_url: Optional[str] = None
    fecha_subida: Optional[datetime] = None
    vigente: bool = field(default=True, metadata=HIDDEN)


@dataclass
class BrigadeApplication:
    brigada_id: int
    nombre_completo: str
    email: str
    telefono: str
    motivacion: str
    n_cuenta: Optional[str] = None
    carrera: Optional[str] = None
    semestre: Optional[str] = None
    experiencia_previa: Optional[str] = None
    estatus: str = "pendiente"
    fecha_solicitud: datetime = field(default_factory=_now)
    id: Optional[int] = None


@dataclass
class CourseEnrollment:
    curso_id: int
    nombre_completo: str
    email: str
    telefono: str
    motivacion: str
    n_cuenta: Optional[str] = None
    carrera: Optional[str] = None
    semestre: Optional[str] = None
    estatus: str = "pendiente"
    fecha_inscripcion: datetime = field(default_factory=_now)
    id: Optional[int] = None


@dataclass
class ContactMessage:
    nombre: str
    email: str
    asunto: str
    mensaje: str
    telefono: Optional[str] = None
    tipo: str = "consulta"
    estatus: str = "nuevo"
    fecha_envio: datetime = field(default_factory=_now)
    id: Optional[int] = None


@dataclass
class EmergencyReport:
    folio: str
    nombre_solicitante: str
    telefono: str
    tipo_emergencia: str
    ubicacion_detallada: str
    descripcion: str
    email: Optional[str] = None
    edificio: Optional[str] = None
    piso: Optional[str] = None
    nivel_urgencia: str = "media"
    numero_afectados: int = 1
    estatus: str = "reportada"
    brigada_asignada: Optional[int] = None
    fecha_reporte: datetime = field(default_factory=_now)
    id: Optional[int] = None
    brigada_nombre: Optional[str] = None


class StoreClient(Protocol):
    """Interface for the store operations behind the HTTP API."""

    def list_news(self, limit: int = NEWS_LIMIT) -> List[NewsItem]:
        ...

    def get_news(self, news_id: int) -> Optional[NewsItem]:
        ...

    def list_brigades(self) -> List[Brigade]:
        ...

    def save_brigade_application(self, application: BrigadeApplication) -> int:
        ...

    def list_courses(self) -> List[Course]:
        ...

    def enroll_in_course(self, enrollment: CourseEnrollment) -> Tuple[int, str]:
        ...

    def list_documents(self) -> List[Document]:
        ...

    def save_contact_message(self, message: ContactMessage) -> int:
        ...

    def save_emergency_report(self, report: EmergencyReport) -> int:
        ...

    def list_emergencies(self, limit: int = EMERGENCIES_LIMIT) -> List[EmergencyReport]:
        ...

    def get_statistics(self) -> dict:
        ...

    def is_connected(self) -> bool:
        ...

    def start(self) -> None:
        ...

    def close(self) -> None:
        ...


def _newest_first(value):
    # NULL dates sort after every real date.
    return (value is not None, value or datetime.min)


class InMemoryStoreClient:
    """Simple in-memory store for development and tests."""

    def __init__(self):
        self.news: List[NewsItem] = []
        self.brigades: List[Brigade] = []
        self.courses: List[Course] = []
        self.documents: List[Document] = []
        self.brigade_applications: List[BrigadeApplication] = []
        self.enrollments: List[CourseEnrollment] = []
        self.contact_messages: List[ContactMessage] = []
        self.emergencies: List[EmergencyReport] = []
        self._ids: Dict[str, itertools.count] = {}
        self._lock = threading.Lock()

    def _next_id(self, table: str) -> int:
        counter = self._ids.setdefault(table, itertools.count(1))
        return next(counter)

    def list_news(self, limit: int = NEWS_LIMIT) -> List[NewsItem]:
        items = [item for item in self.news if item.publicado]
        items.sort(key=lambda item: _newest_first(item.fecha_publicacion), reverse=True)
        items.sort(key=lambda item: bool(item.destacado), reverse=True)
        return items[:limit]

    def get_news(self, news_id: int) -> Optional[NewsItem]:
        for item in self.news:
            if item.id == news_id and item.publicado:
                return item
        return None

    def list_brigades(self) -> List[Brigade]:
        return sorted(
            (b for b in self.brigades if b.activa), key=lambda b: b.nombre
        )

    def save_brigade_application(self, application: BrigadeApplication) -> int:
        with self._lock:
            application.id = self._next_id("solicitudes_brigadistas")
            self.brigade_applications.append(application)
        return application.id

    def list_courses(self) -> List[Course]:
        courses = []
        for course in self.courses:
            if course.estatus not in OPEN_COURSE_STATUSES:
                continue
            enrolled = sum(
                1
                for e in self.enrollments
                if e.curso_id == course.id and e.estatus != CANCELLED_ENROLLMENT
            )
            courses.append(replace(course, total_inscritos=enrolled))
        courses.sort(key=lambda c: (c.fecha_inicio is not None, c.fecha_inicio or date.min))
        return courses

    def enroll_in_course(self, enrollment: CourseEnrollment) -> Tuple[int, str]:
        with self._lock:
            course = next(
                (c for c in self.courses if c.id == enrollment.curso_id), None
            )
            if course is None:
                raise CourseNotFoundError(enrollment.curso_id)
            if course.cupo_disponible <= 0:
                raise NoSeatsAvailableError(course.titulo)
            course.cupo_disponible -= 1
            enrollment.id = self._next_id("inscripciones_cursos")
            self.enrollments.append(enrollment)
        return enrollment.id, course.titulo

    def list_documents(self) -> List[Document]:
        docs = [
            d
            for d in self.documents
            if d.vigente and d.categoria == PUBLIC_DOCUMENT_CATEGORY
        ]
        docs.sort(key=lambda d: _newest_first(d.fecha_subida), reverse=True)
        return docs

    def save_contact_message(self, message: ContactMessage) -> int:
        with self._lock:
            message.id = self._next_id("mensajes_contacto")
            self.contact_messages.append(message)
        return message.id

    def save_emergency_report(self, report: EmergencyReport) -> int:
        with self._lock:
            report.id = self._next_id("emergencias")
            self.emergencies.append(report)
        return report.id

    def list_emergencies(self, limit: int = EMERGENCIES_LIMIT) -> List[EmergencyReport]:
        names = {b.id: b.nombre for b in self.brigades}
        reports = [
            replace(r, brigada_nombre=names.get(r.brigada_asignada))
            for r in self.emergencies
        ]
        reports.sort(key=lambda r: _newest_first(r.fecha_reporte), reverse=True)
        return reports[:limit]

    def get_statistics(self) -> dict:
        active = [b for b in self.brigades if b.activa]
        return {
            "brigadistas_activos": (
                sum(b.miembros_activos for b in active) if active else None
            ),
            "cursos_disponibles": sum(
                1 for c in self.courses if c.estatus in OPEN_COURSE_STATUSES
            ),
            "emergencias_activas": sum(
                1
                for r in self.emergencies
                if r.estatus not in CLOSED_EMERGENCY_STATUSES
            ),
            "solicitudes_pendientes": sum(
                1 for a in self.brigade_applications if a.estatus == "pendiente"
            ),
        }

    def is_connected(self) -> bool:
        return True

    def start(self) -> None:
        pass

    def close(self) -> None:
        pass


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        orig = getattr(exc, "orig", None)
        raise StoreError(str(orig) if orig is not None else str(exc)) from exc


def _to_record(record_cls, row, **extra):
    values = {
        f.name: getattr(row, f.name)
        for f in fields(record_cls)
        if f.name not in extra and hasattr(row, f.name)
    }
    return record_cls(**values, **extra)


def _columns(record) -> dict:
    values = asdict(record)
    values.pop("id", None)
    return values


class SqlStoreClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (MySQL in
    production, SQLite for tests).
    """

    def __init__(
        self,
        database_url: str | URL,
        *,
        ssl: bool = False,
        reconnect_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
        create_schema: bool = False,
    ):
        if not database_url:
            raise ValueError("A database URL is required for SqlStoreClient")
        url = make_url(database_url)
        engine_kwargs = {"future": True, "pool_pre_ping": True, "pool_recycle": 1800}
        if url.get_backend_name() == "sqlite":
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if url.database in (None, "", ":memory:"):
                # One shared connection, otherwise every pooled connection
                # would open its own empty database.
                engine_kwargs["poolclass"] = StaticPool
        elif ssl:
            engine_kwargs["connect_args"] = {
                "ssl": {"check_hostname": False, "verify_mode": "none"}
            }
        self.engine = create_engine(url, **engine_kwargs)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        self.connection = StoreConnection(
            self.engine,
            retry_delay=reconnect_delay,
            on_connect=self._create_schema if create_schema else None,
        )

    def create_schema(self) -> None:
        """Create tables and the statistics view if they do not exist."""
        with _translate_errors():
            self._create_schema()

    def _create_schema(self) -> None:
        if self.engine.dialect.name == "sqlite":
            create_view = f"CREATE VIEW IF NOT EXISTS {STATISTICS_VIEW} AS"
        else:
            create_view = f"CREATE OR REPLACE VIEW {STATISTICS_VIEW} AS"
        Base.metadata.create_all(self.engine)
        with self.engine.begin() as conn:
            conn.execute(text(f"{create_view} {STATISTICS_VIEW_SELECT}"))

    def _insert(self, row) -> int:
        with _translate_errors(), self.Session() as session:
            session.add(row)
            session.commit()
            return row.id

    def list_news(self, limit: int = NEWS_LIMIT) -> List[NewsItem]:
        stmt = (
            select(NewsRow)
            .where(NewsRow.publicado.is_(True))
            .order_by(NewsRow.destacado.desc(), NewsRow.fecha_publicacion.desc())
            .limit(limit)
        )
        with _translate_errors(), self.Session() as session:
            rows = session.execute(stmt).scalars().all()
            return [_to_record(NewsItem, row) for row in rows]

    def get_news(self, news_id: int) -> Optional[NewsItem]:
        stmt = select(NewsRow).where(
            NewsRow.id == news_id, NewsRow.publicado.is_(True)
        )
        with _translate_errors(), self.Session() as session:
            row = session.execute(stmt).scalar_one_or_none()
            return _to_record(NewsItem, row) if row else None

    def list_brigades(self) -> List[Brigade]:
        stmt = (
            select(BrigadeRow)
            .where(BrigadeRow.activa.is_(True))
            .order_by(BrigadeRow.nombre)
        )
        with _translate_errors(), self.Session() as session:
            rows = session.execute(stmt).scalars().all()
            return [_to_record(Brigade, row) for row in rows]

    def save_brigade_application(self, application: BrigadeApplication) -> int:
        application.id = self._insert(
            BrigadeApplicationRow(**_columns(application))
        )
        return application.id

    def list_courses(self) -> List[Course]:
        enrolled = func.count(EnrollmentRow.id).label("total_inscritos")
        stmt = (
            select(CourseRow, enrolled)
            .outerjoin(
                EnrollmentRow,
                and_(
                    CourseRow.id == EnrollmentRow.curso_id,
                    EnrollmentRow.estatus != CANCELLED_ENROLLMENT,
                ),
            )
            .where(CourseRow.estatus.in_(OPEN_COURSE_STATUSES))
            .group_by(CourseRow.id)
            .order_by(CourseRow.fecha_inicio)
        )
        with _translate_errors(), self.Session() as session:
            return [
                _to_record(Course, row, total_inscritos=count)
                for row, count in session.execute(stmt).all()
            ]

    def enroll_in_course(self, enrollment: CourseEnrollment) -> Tuple[int, str]:
        """
        Take one seat and record the enrollment in a single transaction.

        The seat is taken with a conditional update, so concurrent requests
        for the last seat cannot both succeed and the counter never drops
        below zero.
        """
        with _translate_errors(), self.Session() as session, session.begin():
            course = session.get(CourseRow, enrollment.curso_id)
            if course is None:
                raise CourseNotFoundError(enrollment.curso_id)
            taken = session.execute(
                update(CourseRow)
                .where(CourseRow.id == course.id, CourseRow.cupo_disponible > 0)
                .values(cupo_disponible=CourseRow.cupo_disponible - 1)
                .execution_options(synchronize_session=False)
            )
            if taken.rowcount != 1:
                raise NoSeatsAvailableError(course.titulo)
            row = EnrollmentRow(**_columns(enrollment))
            session.add(row)
            session.flush()
            enrollment.id = row.id
            return row.id, course.titulo

    def list_documents(self) -> List[Document]:
        stmt = (
            select(DocumentRow)
            .where(
                DocumentRow.vigente.is_(True),
                DocumentRow.categoria == PUBLIC_DOCUMENT_CATEGORY,
            )
            .order_by(DocumentRow.fecha_subida.desc())
        )
        with _translate_errors(), self.Session() as session:
            rows = session.execute(stmt).scalars().all()
            return [_to_record(Document, row) for row in rows]

    def save_contact_message(self, message: ContactMessage) -> int:
        message.id = self._insert(ContactMessageRow(**_columns(message)))
        return message.id

    def save_emergency_report(self, report: EmergencyReport) -> int:
        values = _columns(report)
        values.pop("brigada_nombre")
        report.id = self._insert(EmergencyRow(**values))
        return report.id

    def list_emergencies(self, limit: int = EMERGENCIES_LIMIT) -> List[EmergencyReport]:
        stmt = (
            select(EmergencyRow, BrigadeRow.nombre.label("brigada_nombre"))
            .outerjoin(BrigadeRow, EmergencyRow.brigada_asignada == BrigadeRow.id)
            .order_by(EmergencyRow.fecha_reporte.desc())
            .limit(limit)
        )
        with _translate_errors(), self.Session() as session:
            return [
                _to_record(EmergencyReport, row, brigada_nombre=name)
                for row, name in session.execute(stmt).all()
            ]

    def get_statistics(self) -> dict:
        with _translate_errors(), self.Session() as session:
            row = (
                session.execute(text(f"SELECT * FROM {STATISTICS_VIEW}"))
                .mappings()
                .first()
            )
            return dict(row) if row else {}

    def is_connected(self) -> bool:
        return self.connection.connected

    def start(self) -> None:
        self.connection.start()

    def close(self) -> None:
        self.connection.stop()


STATISTICS_VIEW_SELECT = """
SELECT
  (SELECT SUM(miembros_activos) FROM brigadas WHERE activa = TRUE)
    AS brigadistas_activos,
  (SELECT COUNT(*) FROM cursos
    WHERE estatus IN ('programado', 'inscripciones_abiertas'))
    AS cursos_disponibles,
  (SELECT COUNT(*) FROM emergencias
    WHERE estatus NOT IN ('resuelta', 'cerrada', 'cancelada'))
    AS emergencias_activas,
  (SELECT COUNT(*) FROM solicitudes_brigadistas WHERE estatus = 'pendiente')
    AS solicitudes_pendientes
"""


Base = declarative_base()


class NewsRow(Base):
    __tablename__ = "novedades"

    id = Column(Integer, primary_key=True, autoincrement=True)
    titulo = Column(String(255), nullable=False)
    resumen = Column(Text, nullable=True)
    contenido = Column(Text, nullable=True)
    categoria = Column(String(100), nullable=True)
    fecha_publicacion = Column(DateTime, nullable=True, index=True)
    destacado = Column(Boolean, nullable=False, default=False)
    publicado = Column(Boolean, nullable=False, default=True, index=True)


class BrigadeRow(Base):
    __tablename__ = "brigadas"

    id = Column(Integer, primary_key=True, autoincrement=True)
    nombre = Column(String(150), nullable=False)
    descripcion = Column(Text, nullable=True)
    coordinador = Column(String(150), nullable=True)
    email_coordinador = Column(String(150), nullable=True)
    telefono_coordinador = Column(String(30), nullable=True)
    miembros_activos = Column(Integer, nullable=False, default=0)
    requisitos = Column(Text, nullable=True)
    imagen_url = Column(String(500), nullable=True)
    activa = Column(Boolean, nullable=False, default=True, index=True)


class BrigadeApplicationRow(Base):
    __tablename__ = "solicitudes_brigadistas"

    id = Column(Integer, primary_key=True, autoincrement=True)
    nombre_completo = Column(String(200), nullable=False)
    email = Column(String(150), nullable=False)
    telefono = Column(String(30), nullable=False)
    n_cuenta = Column(String(30), nullable=True)
    carrera = Column(String(150), nullable=True)
    semestre = Column(String(20), nullable=True)
    brigada_id = Column(Integer, ForeignKey("brigadas.id"), nullable=False, index=True)
    experiencia_previa = Column(Text, nullable=True)
    motivacion = Column(Text, nullable=False)
    estatus = Column(String(30), nullable=False, default="pendiente", index=True)
    fecha_solicitud = Column(DateTime, nullable=False)


class CourseRow(Base):
    __tablename__ = "cursos"

    id = Column(Integer, primary_key=True, autoincrement=True)
    titulo = Column(String(200), nullable=False)
    descripcion = Column(Text, nullable=True)
    duracion_horas = Column(Integer, nullable=True)
    cupo_maximo = Column(Integer, nullable=False, default=0)
    cupo_disponible = Column(Integer, nullable=False, default=0)
    instructor = Column(String(150), nullable=True)
    modalidad = Column(String(50), nullable=True)
    fecha_inicio = Column(Date, nullable=True, index=True)
    fecha_fin = Column(Date, nullable=True)
    horario = Column(String(150), nullable=True)
    costo = Column(Numeric(10, 2), nullable=True)
    estatus = Column(String(30), nullable=False, default="programado", index=True)


class EnrollmentRow(Base):
    __tablename__ = "inscripciones_cursos"

    id = Column(Integer, primary_key=True, autoincrement=True)
    curso_id = Column(Integer, ForeignKey("cursos.id"), nullable=False, index=True)
    nombre_completo = Column(String(200), nullable=False)
    email = Column(String(150), nullable=False)
    telefono = Column(String(30), nullable=False)
    n_cuenta = Column(String(30), nullable=True)
    carrera = Column(String(150), nullable=True)
    semestre = Column(String(20), nullable=True)
    motivacion = Column(Text, nullable=False)
    estatus = Column(String(30), nullable=False, default="pendiente")
    fecha_inscripcion = Column(DateTime, nullable=False)


class DocumentRow(Base):
    __tablename__ = "documentos"

    id = Column(Integer, primary_key=True, autoincrement=True)
    titulo = Column(String(255), nullable=False)
    descripcion = Column(Text, nullable=True)
    categoria = Column(String(50), nullable=False, default=PUBLIC_DOCUMENT_CATEGORY)
    tipo_documento = Column(String(50), nullable=True)
    archivo_url = Column(String(500), nullable=True)
    fecha_subida = Column(DateTime, nullable=True)
    vigente = Column(Boolean, nullable=False, default=True)


class ContactMessageRow(Base):
    __tablename__ = "mensajes_contacto"

    id = Column(Integer, primary_key=True, autoincrement=True)
    nombre = Column(String(200), nullable=False)
    email = Column(String(150), nullable=False)
    telefono = Column(String(30), nullable=True)
    asunto = Column(String(255), nullable=False)
    mensaje = Column(Text, nullable=False)
    tipo = Column(String(50), nullable=False, default="consulta")
    estatus = Column(String(30), nullable=False, default="nuevo")
    fecha_envio = Column(DateTime, nullable=False)


class EmergencyRow(Base):
    __tablename__ = "emergencias"

    id = Column(Integer, primary_key=True, autoincrement=True)
    folio = Column(String(40), nullable=False, unique=True)
    nombre_solicitante = Column(String(200), nullable=False)
    telefono = Column(String(30), nullable=False)
    email = Column(String(150), nullable=True)
    ubicacion_detallada = Column(Text, nullable=False)
    edificio = Column(String(100), nullable=True)
    piso = Column(String(20), nullable=True)
    tipo_emergencia = Column(String(100), nullable=False)
    nivel_urgencia = Column(String(20), nullable=False, default="media")
    descripcion = Column(Text, nullable=False)
    numero_afectados = Column(Integer, nullable=False, default=1)
    estatus = Column(String(30), nullable=False, default="reportada", index=True)
    brigada_asignada = Column(Integer, ForeignKey("brigadas.id"), nullable=True)
    fecha_reporte = Column(DateTime, nullable=False, index=True)
