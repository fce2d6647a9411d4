"""Database setup and ORM models for the autotune engine."""

import logging
from contextlib import contextmanager

from sqlalchemy import (
  JSON,
  BigInteger,
  Column,
  DateTime,
  Float,
  ForeignKey,
  ForeignKeyConstraint,
  Integer,
  String,
  Text,
  UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.sql import func

from autotune.db_config import create_engine_for_url

logger = logging.getLogger(__name__)

engine = create_engine_for_url()

SessionLocal = sessionmaker(
  autocommit=False,
  autoflush=False,
  bind=engine,
  expire_on_commit=False,  # Prevent lazy loading issues
)

# Flag to prevent repeated table creation
_tables_created = False

Base = declarative_base()


class TraceDB(Base):
  """Database model for ingested assistant traces."""

  __tablename__ = 'traces'

  trace_id = Column(String, primary_key=True)
  timestamp = Column(String, nullable=False)
  created_at = Column(BigInteger, nullable=False, index=True)  # epoch ms
  chat_id = Column(String, nullable=False)
  group_folder = Column(String, nullable=False)
  user_id = Column(String, nullable=True)
  input_text = Column(Text, nullable=False)
  output_text = Column(Text, nullable=True)
  model_id = Column(String, nullable=False)
  prompt_pack_versions = Column(JSON, default=dict)  # behavior -> pack version
  memory_summary = Column(Text, nullable=True)
  memory_facts = Column(JSON, default=list)
  memory_recall = Column(JSON, default=list)
  session_recall = Column(JSON, default=list)
  tool_calls = Column(JSON, default=list)
  latency_ms = Column(Integer, nullable=True)
  tokens_prompt = Column(Integer, nullable=True)
  tokens_completion = Column(Integer, nullable=True)
  cost_total_usd = Column(Float, nullable=True)
  error_code = Column(String, nullable=True)
  source = Column(String, nullable=True)


class EvalRunDB(Base):
  """Database model for judging batches (append-only audit log)."""

  __tablename__ = 'eval_runs'

  id = Column(String, primary_key=True)
  rubric = Column(String, nullable=False)
  model_id = Column(String, nullable=False)
  status = Column(String, nullable=False, default='running')
  trace_count = Column(Integer, nullable=False, default=0)
  cost_usd = Column(Float, default=0.0)
  created_at = Column(DateTime, default=func.now())
  finished_at = Column(DateTime, nullable=True)


class EvalScoreDB(Base):
  """Database model for per-trace rubric scores. One row per (trace, metric)."""

  __tablename__ = 'eval_scores'

  trace_id = Column(String, ForeignKey('traces.trace_id'), primary_key=True)
  metric = Column(String, primary_key=True)
  score = Column(Float, nullable=False)
  reason = Column(Text, nullable=True)
  run_id = Column(String, ForeignKey('eval_runs.id'), nullable=True)
  created_at = Column(DateTime, default=func.now())
  updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class PromptPackDB(Base):
  """Database model for versioned prompt packs."""

  __tablename__ = 'prompt_packs'
  __table_args__ = (UniqueConstraint('behavior', 'version', name='uq_prompt_packs_behavior_version'),)

  id = Column(String, primary_key=True)
  behavior = Column(String, nullable=False, index=True)
  version = Column(String, nullable=False)
  pack_name = Column(String, nullable=False)
  instructions = Column(Text, nullable=False)
  demos = Column(JSON, default=list)
  metric = Column(JSON, nullable=True)  # {name, model, score}
  score = Column(Float, nullable=True)
  pack_metadata = Column(JSON, default=dict)
  created_at = Column(DateTime, default=func.now())


class DeploymentDB(Base):
  """Database model for the deployment event log."""

  __tablename__ = 'prompt_deployments'
  __table_args__ = (
    ForeignKeyConstraint(
      ['behavior', 'pack_version'],
      ['prompt_packs.behavior', 'prompt_packs.version'],
      name='fk_prompt_deployments_pack',
    ),
  )

  id = Column(String, primary_key=True)
  behavior = Column(String, nullable=False, index=True)
  pack_version = Column(String, nullable=False)
  target_path = Column(String, nullable=False)
  status = Column(String, nullable=False)
  canary_percent = Column(Integer, nullable=False, default=0)
  note = Column(Text, nullable=True)
  created_at = Column(DateTime, default=func.now())


class BehaviorStateDB(Base):
  """Database model for the per-behavior active/canary pointers."""

  __tablename__ = 'behavior_states'

  behavior = Column(String, primary_key=True)
  active_version = Column(String, nullable=True)
  canary_version = Column(String, nullable=True)
  canary_since = Column(DateTime, nullable=True)
  updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


def get_db():
  """Get database session for request handling."""
  global _tables_created

  if not _tables_created:
    try:
      create_tables()
      _tables_created = True
    except Exception as e:
      logger.warning(f'Could not create tables: {e}')

  db = SessionLocal()
  try:
    yield db
  except Exception:
    db.rollback()
    raise
  finally:
    db.close()


@contextmanager
def session_scope(session_factory=None):
  """Provide a session for non-request work such as the scheduler."""
  factory = session_factory or SessionLocal
  db = factory()
  try:
    yield db
  except Exception:
    db.rollback()
    raise
  finally:
    db.close()


def create_tables(bind=None):
  """Create all database tables."""
  target = bind or engine
  logger.info('Creating database tables...')
  Base.metadata.create_all(bind=target)


def drop_tables(bind=None):
  """Drop all database tables."""
  Base.metadata.drop_all(bind=bind or engine)
