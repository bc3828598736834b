"""
CLI helper to create the Protección Civil tables and statistics view, with
optional sample data for local development.
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from proteccion_civil.config import get_settings
from proteccion_civil.db import (
    BrigadeRow,
    CourseRow,
    DocumentRow,
    NewsRow,
    SqlStoreClient,
    StoreError,
)

logger = logging.getLogger(__name__)


def _sample_rows() -> list:
    return [
        BrigadeRow(
            nombre="Primeros Auxilios",
            descripcion="Atención prehospitalaria en campus.",
            coordinador="Dra. Elena Ruiz",
            email_coordinador="primeros.auxilios@example.mx",
            miembros_activos=22,
            requisitos="Curso básico de primeros auxilios.",
        ),
        BrigadeRow(
            nombre="Evacuación",
            descripcion="Coordinación de simulacros y rutas de evacuación.",
            coordinador="Ing. Raúl Méndez",
            email_coordinador="evacuacion@example.mx",
            miembros_activos=20,
        ),
        BrigadeRow(
            nombre="Prevención y Combate de Incendios",
            descripcion="Uso de extintores y control de conatos.",
            coordinador="Lic. Sofía Torres",
            email_coordinador="incendios@example.mx",
            miembros_activos=17,
        ),
        CourseRow(
            titulo="Primeros Auxilios Básicos",
            duracion_horas=20,
            cupo_maximo=30,
            cupo_disponible=30,
            instructor="Dra. Elena Ruiz",
            modalidad="presencial",
            fecha_inicio=date(2025, 9, 1),
            fecha_fin=date(2025, 9, 5),
            horario="16:00 - 20:00",
            costo=Decimal("0.00"),
            estatus="inscripciones_abiertas",
        ),
        CourseRow(
            titulo="Manejo de Extintores",
            duracion_horas=8,
            cupo_maximo=20,
            cupo_disponible=20,
            modalidad="presencial",
            fecha_inicio=date(2025, 10, 6),
            estatus="programado",
        ),
        NewsRow(
            titulo="Simulacro general de evacuación",
            resumen="Participa en el simulacro del próximo mes.",
            contenido="Todas las facultades participarán en el simulacro.",
            categoria="simulacros",
            fecha_publicacion=datetime(2025, 8, 15, 9, 0),
            destacado=True,
        ),
        DocumentRow(
            titulo="Plan de Protección Civil",
            tipo_documento="pdf",
            archivo_url="/uploads/plan_proteccion_civil.pdf",
            fecha_subida=datetime(2025, 8, 1, 12, 0),
        ),
    ]


def main() -> int:
    parser = argparse.ArgumentParser(description="Create the Protección Civil schema")
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="Override the SQLAlchemy URL built from the MYSQL* variables",
    )
    parser.add_argument(
        "--seed",
        action="store_true",
        help="Insert sample brigades, courses, news and documents when empty",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)

    settings = get_settings()
    client = SqlStoreClient(
        args.database_url or settings.sqlalchemy_url,
        ssl=settings.is_production,
    )
    try:
        client.create_schema()
        logger.info("Esquema creado en %s", client.engine.url.database)
        if args.seed:
            with client.Session() as session:
                existing = session.execute(
                    select(func.count()).select_from(BrigadeRow)
                ).scalar_one()
                if existing:
                    logger.info("La base ya tiene datos; se omite la carga de ejemplo")
                else:
                    session.add_all(_sample_rows())
                    session.commit()
                    logger.info("Datos de ejemplo cargados")
    except (StoreError, SQLAlchemyError) as exc:
        logger.error("No se pudo inicializar la base de datos: %s", exc)
        return 1
    finally:
        client.engine.dispose()
    return 0


if __name__ == "__main__":
    sys.exit(main())
