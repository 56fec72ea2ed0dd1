"""
AviSafe Store — SQLAlchemy models and DatabaseService
=====================================================
The rows the risk engine reads (missions, personnel, fleet, company policy)
and the two it writes:

  mission_risk_assessments   append-only, one row per engine invocation
  mission_sora               one current SORA record per mission (upsert)

All service methods open a short-lived session and return plain dicts, so
callers never hold ORM objects across threads.
"""

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import declarative_base, sessionmaker

log = logging.getLogger("store.db")

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _row_dict(obj) -> Dict[str, Any]:
    return {c.name: getattr(obj, c.name) for c in obj.__table__.columns}


def _json_row(obj) -> Dict[str, Any]:
    """Row dict with dates as ISO strings, safe to embed in a JSON column."""
    return {
        k: (v.isoformat() if isinstance(v, (date, datetime)) else v)
        for k, v in _row_dict(obj).items()
    }


# ══════════════════════════════════════════════════════════════════════════════
# Read-side tables
# ══════════════════════════════════════════════════════════════════════════════

class Mission(Base):
    __tablename__ = "missions"
    id              = Column(String(64), primary_key=True, default=_uuid)
    company_id      = Column(String(64), index=True)
    title           = Column(String(256), nullable=False, default="")
    location        = Column(String(256))
    description     = Column(Text)
    scheduled_start = Column(DateTime)
    scheduled_end   = Column(DateTime)
    risk_tier       = Column(String(32))
    route           = Column(JSON)
    latitude        = Column(Float)
    longitude       = Column(Float)
    customer_ref    = Column(String(128))


class Profile(Base):
    __tablename__ = "profiles"
    id           = Column(String(64), primary_key=True, default=_uuid)
    company_id   = Column(String(64), index=True)
    full_name    = Column(String(256))
    flight_hours = Column(Float, default=0.0)


class PersonnelCompetency(Base):
    __tablename__ = "personnel_competencies"
    id         = Column(String(64), primary_key=True, default=_uuid)
    profile_id = Column(String(64), index=True, nullable=False)
    name       = Column(String(256), nullable=False)
    type       = Column(String(128))
    expires_on = Column(Date)


class FlightLog(Base):
    __tablename__ = "flight_logs"
    id               = Column(String(64), primary_key=True, default=_uuid)
    user_id          = Column(String(64), index=True, nullable=False)
    drone_id         = Column(String(64), index=True)
    flight_date      = Column(Date, nullable=False)
    duration_minutes = Column(Integer, default=0)


class Drone(Base):
    __tablename__ = "drones"
    id               = Column(String(64), primary_key=True, default=_uuid)
    company_id       = Column(String(64), index=True)
    model            = Column(String(256), nullable=False)
    serial_number    = Column(String(128))
    status           = Column(String(32), default="green")
    flight_hours     = Column(Float, default=0.0)
    last_maintenance = Column(Date)
    next_maintenance = Column(Date)
    available        = Column(Boolean, default=True)


class Equipment(Base):
    __tablename__ = "equipment"
    id               = Column(String(64), primary_key=True, default=_uuid)
    company_id       = Column(String(64), index=True)
    name             = Column(String(256), nullable=False)
    serial_number    = Column(String(128))
    status           = Column(String(32), default="green")
    last_maintenance = Column(Date)
    next_maintenance = Column(Date)
    available        = Column(Boolean, default=True)


class MissionPersonnel(Base):
    __tablename__ = "mission_personnel"
    id         = Column(String(64), primary_key=True, default=_uuid)
    mission_id = Column(String(64), index=True, nullable=False)
    profile_id = Column(String(64), nullable=False)
    role       = Column(String(64))


class MissionDrone(Base):
    __tablename__ = "mission_drones"
    id         = Column(String(64), primary_key=True, default=_uuid)
    mission_id = Column(String(64), index=True, nullable=False)
    drone_id   = Column(String(64), nullable=False)


class MissionEquipment(Base):
    __tablename__ = "mission_equipment"
    id           = Column(String(64), primary_key=True, default=_uuid)
    mission_id   = Column(String(64), index=True, nullable=False)
    equipment_id = Column(String(64), nullable=False)


class CompanySoraConfig(Base):
    __tablename__ = "company_sora_config"
    company_id                     = Column(String(64), primary_key=True)
    max_wind_speed_ms              = Column(Float)
    max_wind_gust_ms               = Column(Float)
    max_visibility_km              = Column(Float)
    max_flight_altitude_m          = Column(Float)
    min_temp_c                     = Column(Float)
    max_temp_c                     = Column(Float)
    require_backup_battery         = Column(Boolean, default=False)
    require_observer               = Column(Boolean, default=False)
    allow_bvlos                    = Column(Boolean, default=False)
    allow_night_flight             = Column(Boolean, default=False)
    max_pilot_inactivity_days      = Column(Integer)
    max_population_density_per_km2 = Column(Float)
    operative_restrictions         = Column(Text)
    policy_notes                   = Column(Text)
    linked_document_ids            = Column(JSON)


class Document(Base):
    __tablename__ = "documents"
    id         = Column(String(64), primary_key=True, default=_uuid)
    company_id = Column(String(64), index=True)
    title      = Column(String(256), nullable=False)
    category   = Column(String(64))
    summary    = Column(Text)


# ══════════════════════════════════════════════════════════════════════════════
# Write-side tables
# ══════════════════════════════════════════════════════════════════════════════

class MissionRiskAssessment(Base):
    __tablename__ = "mission_risk_assessments"
    id                       = Column(String(64), primary_key=True, default=_uuid)
    mission_id               = Column(String(64), index=True, nullable=False)
    pilot_id                 = Column(String(64), index=True)
    company_id               = Column(String(64))
    assessment_type          = Column(String(32), default="initial")
    weather_score            = Column(Integer)
    airspace_score           = Column(Integer)
    pilot_experience_score   = Column(Integer)
    mission_complexity_score = Column(Integer)
    equipment_score          = Column(Integer)
    overall_score            = Column(Float)
    recommendation           = Column(String(16))
    hard_stop_triggered      = Column(Boolean, default=False)
    hard_stop_reason         = Column(Text)
    ai_analysis              = Column(JSON)
    pilot_inputs             = Column(JSON)
    pilot_comments           = Column(JSON)
    weather_data             = Column(JSON)
    airspace_warnings        = Column(JSON)
    sora_output              = Column(JSON)
    created_at               = Column(DateTime, default=_utcnow, index=True, nullable=False)


class MissionSora(Base):
    __tablename__ = "mission_sora"
    __table_args__ = (UniqueConstraint("mission_id", name="uq_mission_sora_mission"),)
    id                    = Column(String(64), primary_key=True, default=_uuid)
    mission_id            = Column(String(64), nullable=False)
    company_id            = Column(String(64))
    environment           = Column(String(64))
    conops_summary        = Column(Text)
    igrc                  = Column(Integer)
    ground_mitigations    = Column(Text)
    fgrc                  = Column(Integer)
    arc_initial           = Column(String(8))
    airspace_mitigations  = Column(Text)
    arc_residual          = Column(String(8))
    sail                  = Column(String(8))
    residual_risk_level   = Column(String(32))
    residual_risk_comment = Column(Text)
    operational_limits    = Column(Text)
    sora_status           = Column(String(32))
    prepared_by           = Column(String(64))
    prepared_at           = Column(DateTime)
    approved_by           = Column(String(64))
    approved_at           = Column(DateTime)
    updated_at            = Column(DateTime, default=_utcnow, onupdate=_utcnow)


_SORA_FIELDS = (
    "company_id", "environment", "conops_summary", "igrc", "ground_mitigations",
    "fgrc", "arc_initial", "airspace_mitigations", "arc_residual", "sail",
    "residual_risk_level", "residual_risk_comment", "operational_limits",
    "sora_status", "prepared_by", "prepared_at",
)


# ══════════════════════════════════════════════════════════════════════════════
# Service
# ══════════════════════════════════════════════════════════════════════════════

class DatabaseService:
    def __init__(self, database_url: str):
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        self.engine = create_engine(database_url, pool_pre_ping=True, connect_args=connect_args)
        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)
        Base.metadata.create_all(bind=self.engine)

    # ── Missions ──────────────────────────────────────────────────────────────

    def get_mission(self, mission_id: str) -> Optional[Dict[str, Any]]:
        """Mission row plus its current SORA record under `prior_sora`."""
        with self.SessionLocal() as db:
            mission = db.get(Mission, mission_id)
            if mission is None:
                return None
            row  = _row_dict(mission)
            sora = db.query(MissionSora).filter(MissionSora.mission_id == mission_id).one_or_none()
            row["prior_sora"] = _json_row(sora) if sora else None
            return row

    def get_mission_sora(self, mission_id: str) -> Optional[Dict[str, Any]]:
        with self.SessionLocal() as db:
            sora = db.query(MissionSora).filter(MissionSora.mission_id == mission_id).one_or_none()
            return _row_dict(sora) if sora else None

    # ── Personnel ─────────────────────────────────────────────────────────────

    def get_mission_personnel(self, mission_id: str) -> List[Dict[str, Any]]:
        with self.SessionLocal() as db:
            rows = (
                db.query(MissionPersonnel, Profile)
                .join(Profile, Profile.id == MissionPersonnel.profile_id)
                .filter(MissionPersonnel.mission_id == mission_id)
                .order_by(MissionPersonnel.id)
                .all()
            )
            return [{**_row_dict(profile), "role": link.role} for link, profile in rows]

    def get_profile(self, profile_id: str) -> Optional[Dict[str, Any]]:
        with self.SessionLocal() as db:
            profile = db.get(Profile, profile_id)
            return _row_dict(profile) if profile else None

    def get_competencies(self, profile_ids: Iterable[str]) -> Dict[str, List[Dict[str, Any]]]:
        ids = list(profile_ids)
        out: Dict[str, List[Dict[str, Any]]] = {pid: [] for pid in ids}
        if not ids:
            return out
        with self.SessionLocal() as db:
            rows = db.query(PersonnelCompetency).filter(PersonnelCompetency.profile_id.in_(ids)).all()
            for row in rows:
                out[row.profile_id].append(_row_dict(row))
        return out

    def get_flight_logs(self, user_id: str) -> List[Dict[str, Any]]:
        """Newest first."""
        with self.SessionLocal() as db:
            rows = (
                db.query(FlightLog)
                .filter(FlightLog.user_id == user_id)
                .order_by(FlightLog.flight_date.desc())
                .all()
            )
            return [_row_dict(r) for r in rows]

    # ── Fleet ─────────────────────────────────────────────────────────────────

    def get_mission_drones(self, mission_id: str) -> List[Dict[str, Any]]:
        with self.SessionLocal() as db:
            rows = (
                db.query(Drone)
                .join(MissionDrone, MissionDrone.drone_id == Drone.id)
                .filter(MissionDrone.mission_id == mission_id)
                .all()
            )
            return [_row_dict(r) for r in rows]

    def get_drone(self, drone_id: str) -> Optional[Dict[str, Any]]:
        with self.SessionLocal() as db:
            drone = db.get(Drone, drone_id)
            return _row_dict(drone) if drone else None

    def get_mission_equipment(self, mission_id: str) -> List[Dict[str, Any]]:
        with self.SessionLocal() as db:
            rows = (
                db.query(Equipment)
                .join(MissionEquipment, MissionEquipment.equipment_id == Equipment.id)
                .filter(MissionEquipment.mission_id == mission_id)
                .all()
            )
            return [_row_dict(r) for r in rows]

    # ── Company policy ────────────────────────────────────────────────────────

    def get_company_sora_config(self, company_id: str) -> Optional[Dict[str, Any]]:
        with self.SessionLocal() as db:
            config = db.get(CompanySoraConfig, company_id)
            return _row_dict(config) if config else None

    def get_document_summaries(self, document_ids: Iterable[str]) -> List[Dict[str, Any]]:
        ids = list(document_ids)
        if not ids:
            return []
        with self.SessionLocal() as db:
            rows = db.query(Document).filter(Document.id.in_(ids)).all()
            return [
                {"id": d.id, "title": d.title, "category": d.category, "summary": d.summary}
                for d in rows
            ]

    # ── Writes ────────────────────────────────────────────────────────────────

    def insert_assessment(self, record: Dict[str, Any]) -> str:
        with self.SessionLocal() as db:
            row = MissionRiskAssessment(**record)
            db.add(row)
            db.commit()
            db.refresh(row)
            log.info(f"[store] assessment {row.id} saved for mission {row.mission_id}")
            return row.id

    def _sora_upsert_stmt(self, mission_id: str, values: Dict[str, Any]):
        """Last write wins on mission_id."""
        payload = {k: values.get(k) for k in _SORA_FIELDS if k in values}
        payload["updated_at"] = _utcnow()

        dialect = self.engine.dialect.name
        if dialect == "postgresql":
            insert = pg_insert
        elif dialect == "sqlite":
            insert = sqlite_insert
        else:
            raise NotImplementedError(f"mission_sora upsert not supported on {dialect}")

        stmt = insert(MissionSora.__table__).values(id=_uuid(), mission_id=mission_id, **payload)
        return stmt.on_conflict_do_update(index_elements=["mission_id"], set_=payload)

    def save_sora_reassessment(self, record: Dict[str, Any], mission_id: str, values: Dict[str, Any]) -> str:
        """
        Audit row and mission_sora upsert in one transaction. If either write
        fails nothing is committed, so the save can be retried as a whole.
        """
        with self.SessionLocal() as db:
            row = MissionRiskAssessment(**record)
            db.add(row)
            db.flush()
            assessment_id = row.id
            db.execute(self._sora_upsert_stmt(mission_id, values))
            db.commit()
        log.info(f"[store] SORA reassessment {assessment_id} and mission_sora saved for mission {mission_id}")
        return assessment_id

    def list_assessments(self, mission_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        with self.SessionLocal() as db:
            rows = (
                db.query(MissionRiskAssessment)
                .filter(MissionRiskAssessment.mission_id == mission_id)
                .order_by(MissionRiskAssessment.created_at.desc())
                .limit(limit)
                .all()
            )
            return [_row_dict(r) for r in rows]
