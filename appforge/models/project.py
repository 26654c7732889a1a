from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from appforge.core.database import Base


class ProjectStatus:
    DRAFT = "draft"
    GENERATING = "generating"
    TESTING = "testing"
    DEPLOYED = "deployed"
    FAILED = "failed"
    STOPPED = "stopped"

    ALL = (DRAFT, GENERATING, TESTING, DEPLOYED, FAILED, STOPPED)


class Project(Base):
    __tablename__ = "projects"
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(36), index=True, nullable=True)

    name: Mapped[str] = mapped_column(String(200))
    slug: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)
    description: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(20), default=ProjectStatus.DRAFT, index=True)

    # industry, features, integrations, multi_tenant, authentication
    config: Mapped[dict] = mapped_column(JSON, default=dict)
    generation_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    output_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    generated_files: Mapped[list] = mapped_column(JSON, default=list)
    generation_stats: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    test_results: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    ports: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    urls: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
