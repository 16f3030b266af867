from __future__ import annotations
from typing import List

from fastapi import APIRouter, Depends, File, UploadFile
from pydantic import BaseModel

from ..document_parser import DocumentParser, get_document_parser
from .subjects import DskpCreate

router = APIRouter(prefix="/api/documents", tags=["documents"])


class NamesOut(BaseModel):
	names: List[str]


class DskpItemsOut(BaseModel):
	items: List[DskpCreate]


@router.post("/student-names", response_model=NamesOut)
async def parse_student_names(file: UploadFile = File(...), parser: DocumentParser = Depends(get_document_parser)):
	names = await parser.parse_student_list(await file.read(), file.content_type)
	return NamesOut(names=names)


@router.post("/dskp", response_model=DskpItemsOut)
async def parse_dskp(file: UploadFile = File(...), parser: DocumentParser = Depends(get_document_parser)):
	items = await parser.parse_dskp(await file.read(), file.content_type)
	return DskpItemsOut(items=[DskpCreate(**i) for i in items])
