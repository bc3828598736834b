import tempfile
import threading
import unittest
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime
from pathlib import Path
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from proteccion_civil.app import create_app
from proteccion_civil.db import (
    BrigadeApplication,
    BrigadeRow,
    CourseEnrollment,
    CourseNotFoundError,
    CourseRow,
    DocumentRow,
    EmergencyReport,
    EnrollmentRow,
    InMemoryStoreClient,
    NewsRow,
    NoSeatsAvailableError,
    SqlStoreClient,
    StoreError,
    STATISTICS_VIEW,
)
from proteccion_civil.dependencies import get_store_client


def _enrollment(curso_id):
    return CourseEnrollment(
        curso_id=curso_id,
        nombre_completo="Luis Pérez",
        email="luis@example.com",
        telefono="5587654321",
        motivacion="Aprender",
    )


class SqlStoreClientTests(unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the SQL client logic.
    """

    def setUp(self):
        self.db = SqlStoreClient("sqlite+pysqlite:///:memory:")
        self.db.create_schema()
        with self.db.Session() as session:
            session.add_all(
                [
                    BrigadeRow(id=1, nombre="Rescate", miembros_activos=8),
                    BrigadeRow(id=2, nombre="Evacuación", miembros_activos=4),
                    BrigadeRow(id=3, nombre="Disuelta", miembros_activos=9, activa=False),
                    CourseRow(
                        id=1,
                        titulo="Primeros auxilios",
                        cupo_maximo=10,
                        cupo_disponible=1,
                        fecha_inicio=date(2025, 3, 1),
                        estatus="inscripciones_abiertas",
                    ),
                    CourseRow(
                        id=2,
                        titulo="Extintores",
                        cupo_maximo=10,
                        cupo_disponible=0,
                        fecha_inicio=date(2025, 2, 1),
                        estatus="programado",
                    ),
                    CourseRow(id=3, titulo="Cerrado", estatus="finalizado"),
                ]
            )
            for i in range(1, 13):
                session.add(
                    NewsRow(
                        id=i,
                        titulo=f"Novedad {i}",
                        fecha_publicacion=datetime(2025, 1, i),
                        destacado=i == 3,
                        publicado=i != 12,
                    )
                )
            session.add_all(
                [
                    DocumentRow(id=1, titulo="Plan interno", categoria="interno"),
                    DocumentRow(
                        id=2, titulo="Guía", fecha_subida=datetime(2025, 1, 5)
                    ),
                ]
            )
            session.commit()

    def tearDown(self):
        self.db.engine.dispose()

    def test_news_are_published_featured_first_and_capped(self):
        news = self.db.list_news()
        self.assertEqual(len(news), 10)
        self.assertEqual(news[0].id, 3)
        self.assertEqual([n.id for n in news[1:4]], [11, 10, 9])
        self.assertTrue(all(n.publicado for n in news))

    def test_get_news_hides_unpublished(self):
        self.assertEqual(self.db.get_news(4).titulo, "Novedad 4")
        self.assertIsNone(self.db.get_news(12))
        self.assertIsNone(self.db.get_news(404))

    def test_brigades_and_documents(self):
        self.assertEqual(
            [b.nombre for b in self.db.list_brigades()], ["Evacuación", "Rescate"]
        )
        self.assertEqual([d.id for d in self.db.list_documents()], [2])

    def test_courses_count_active_enrollments(self):
        with self.db.Session() as session:
            session.add_all(
                [
                    EnrollmentRow(
                        curso_id=1,
                        nombre_completo="A",
                        email="a@x.mx",
                        telefono="1",
                        motivacion="m",
                        fecha_inscripcion=datetime(2025, 1, 1),
                    ),
                    EnrollmentRow(
                        curso_id=1,
                        nombre_completo="B",
                        email="b@x.mx",
                        telefono="2",
                        motivacion="m",
                        estatus="cancelada",
                        fecha_inscripcion=datetime(2025, 1, 1),
                    ),
                ]
            )
            session.commit()
        courses = self.db.list_courses()
        self.assertEqual([c.id for c in courses], [2, 1])
        self.assertEqual(courses[1].total_inscritos, 1)
        self.assertEqual(courses[0].total_inscritos, 0)

    def test_enrollment_takes_last_seat_once(self):
        enrollment_id, title = self.db.enroll_in_course(_enrollment(1))
        self.assertEqual(title, "Primeros auxilios")
        self.assertIsNotNone(enrollment_id)

        with self.assertRaises(NoSeatsAvailableError):
            self.db.enroll_in_course(_enrollment(1))

        with self.db.Session() as session:
            self.assertEqual(session.get(CourseRow, 1).cupo_disponible, 0)
            count = session.execute(
                text("SELECT COUNT(*) FROM inscripciones_cursos")
            ).scalar_one()
        self.assertEqual(count, 1)

    def test_enrollment_in_unknown_course(self):
        with self.assertRaises(CourseNotFoundError):
            self.db.enroll_in_course(_enrollment(99))

    def test_emergency_report_and_listing(self):
        report = EmergencyReport(
            folio="EMG-1",
            nombre_solicitante="Jorge",
            telefono="1",
            tipo_emergencia="sismo",
            ubicacion_detallada="patio",
            descripcion="grietas",
            brigada_asignada=1,
        )
        report_id = self.db.save_emergency_report(report)
        self.assertEqual(report.id, report_id)
        listed = self.db.list_emergencies()
        self.assertEqual(listed[0].folio, "EMG-1")
        self.assertEqual(listed[0].brigada_nombre, "Rescate")
        self.assertEqual(listed[0].nivel_urgencia, "media")

    def test_duplicate_folio_is_a_store_error(self):
        def report():
            return EmergencyReport(
                folio="EMG-1",
                nombre_solicitante="Jorge",
                telefono="1",
                tipo_emergencia="sismo",
                ubicacion_detallada="patio",
                descripcion="grietas",
            )

        self.db.save_emergency_report(report())
        with self.assertRaises(StoreError):
            self.db.save_emergency_report(report())

    def test_statistics_view(self):
        self.db.save_brigade_application(
            BrigadeApplication(
                brigada_id=1,
                nombre_completo="Ana",
                email="ana@example.com",
                telefono="1",
                motivacion="m",
            )
        )
        stats = self.db.get_statistics()
        self.assertEqual(stats["brigadistas_activos"], 12)
        self.assertEqual(stats["cursos_disponibles"], 2)
        self.assertEqual(stats["emergencias_activas"], 0)
        self.assertEqual(stats["solicitudes_pendientes"], 1)

    def test_missing_table_raises_store_error(self):
        with self.db.engine.begin() as conn:
            conn.execute(text(f"DROP VIEW {STATISTICS_VIEW}"))
        with self.assertRaises(StoreError) as ctx:
            self.db.get_statistics()
        self.assertIn(STATISTICS_VIEW, str(ctx.exception))


class SqlApiTests(unittest.TestCase):
    def setUp(self):
        self.db = SqlStoreClient("sqlite+pysqlite:///:memory:")
        self.db.create_schema()
        app = create_app()
        app.dependency_overrides[get_store_client] = lambda: self.db
        self.client = TestClient(app)

    def tearDown(self):
        self.db.engine.dispose()

    def test_empty_statistics_view_uses_fallbacks(self):
        with self.db.engine.begin() as conn:
            conn.execute(text(f"DROP VIEW {STATISTICS_VIEW}"))
            conn.execute(
                text(
                    f"CREATE VIEW {STATISTICS_VIEW} AS "
                    "SELECT 1 AS brigadistas_activos WHERE 1 = 0"
                )
            )
        response = self.client.get("/api/estadisticas")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json()["data"],
            {
                "brigadistas_activos": 59,
                "cursos_disponibles": 3,
                "emergencias_activas": 0,
                "solicitudes_pendientes": 0,
            },
        )

    def test_missing_fields_insert_nothing(self):
        response = self.client.post(
            "/api/emergencias", json={"nombre_solicitante": "Jorge"}
        )
        self.assertEqual(response.status_code, 400)
        with self.db.Session() as session:
            count = session.execute(text("SELECT COUNT(*) FROM emergencias")).scalar_one()
        self.assertEqual(count, 0)

    def test_query_failure_is_500(self):
        with self.db.engine.begin() as conn:
            conn.execute(text("DROP TABLE documentos"))
        response = self.client.get("/api/documentos")
        self.assertEqual(response.status_code, 500)
        payload = response.json()
        self.assertFalse(payload["success"])
        self.assertEqual(payload["message"], "Error en la consulta")
        self.assertIn("documentos", payload["error"])


class StartupTests(unittest.TestCase):
    def test_schema_failure_leaves_the_app_serving(self):
        attempted = threading.Event()

        def fail_schema():
            attempted.set()
            raise OperationalError("CREATE TABLE", {}, Exception("Access denied"))

        with patch.object(SqlStoreClient, "_create_schema", side_effect=fail_schema):
            db = SqlStoreClient(
                "sqlite+pysqlite:///:memory:", reconnect_delay=60, create_schema=True
            )
        app = create_app()
        app.dependency_overrides[get_store_client] = lambda: db
        with TestClient(app) as client:
            self.assertTrue(attempted.wait(timeout=5))
            response = client.get("/health")
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.json()["database"], "disconnected")
        self.assertFalse(db.is_connected())


class SqlConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        path = Path(self.tmp.name) / "store.db"
        self.db = SqlStoreClient(f"sqlite+pysqlite:///{path}")
        self.db.create_schema()
        with self.db.Session() as session:
            session.add(
                CourseRow(
                    id=1, titulo="Último lugar", cupo_maximo=10, cupo_disponible=1
                )
            )
            session.commit()

    def tearDown(self):
        self.db.engine.dispose()
        self.tmp.cleanup()

    def test_concurrent_enrollments_for_last_seat(self):
        def attempt(_):
            try:
                self.db.enroll_in_course(_enrollment(1))
            except NoSeatsAvailableError:
                return False
            return True

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(attempt, range(8)))

        self.assertEqual(results.count(True), 1)
        with self.db.Session() as session:
            self.assertEqual(session.get(CourseRow, 1).cupo_disponible, 0)
            count = session.execute(
                text("SELECT COUNT(*) FROM inscripciones_cursos")
            ).scalar_one()
        self.assertEqual(count, 1)


class InMemoryConcurrencyTests(unittest.TestCase):
    def test_concurrent_enrollments_for_last_seat(self):
        from proteccion_civil.db import Course

        store = InMemoryStoreClient()
        store.courses.append(Course(id=1, titulo="Último lugar", cupo_disponible=1))

        def attempt(_):
            try:
                store.enroll_in_course(_enrollment(1))
            except NoSeatsAvailableError:
                return False
            return True

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(attempt, range(16)))

        self.assertEqual(results.count(True), 1)
        self.assertEqual(store.courses[0].cupo_disponible, 0)
        self.assertEqual(len(store.enrollments), 1)


if __name__ == "__main__":
    unittest.main()
