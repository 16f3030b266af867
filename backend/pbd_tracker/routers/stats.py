from __future__ import annotations
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..assessment_query import Predicate, query_assessments
from ..db import get_db
from ..stats import analytics, dashboard_stats
from .assessments import assessment_filters

router = APIRouter(prefix="/api", tags=["stats"])


class TpCount(BaseModel):
	tp_level: int
	count: int


class StatsOut(BaseModel):
	# camelCase on the wire, matching what the dashboard reads
	total_classes: int = Field(serialization_alias="totalClasses")
	total_students: int = Field(serialization_alias="totalStudents")
	total_assessments: int = Field(serialization_alias="totalAssessments")
	tp_distribution: List[TpCount] = Field(serialization_alias="tpDistribution")


class LevelCount(TpCount):
	name: str


class TimelinePoint(BaseModel):
	date: str
	tp_level: int
	student_name: str
	subject_name: str


class AnalyticsOut(BaseModel):
	tp_distribution: List[LevelCount]
	timeline: List[TimelinePoint]


@router.get("/stats", response_model=StatsOut)
def get_stats(db: Session = Depends(get_db)):
	return StatsOut(**dashboard_stats(db))


@router.get("/analytics", response_model=AnalyticsOut)
def get_analytics(
	predicates: List[Predicate] = Depends(assessment_filters),
	db: Session = Depends(get_db),
):
	return AnalyticsOut(**analytics(query_assessments(db, predicates)))
