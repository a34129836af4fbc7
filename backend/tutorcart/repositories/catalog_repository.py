"""Read-only lookups against the course/tutor catalog."""

import logging
from typing import Dict, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.catalog import Course, Tutor
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class CatalogRepository(BaseRepository[Course]):
    def __init__(self, db: Session):
        super().__init__(db, Course)

    def get_course(self, course_id: str) -> Optional[Course]:
        return self.db.get(Course, course_id)

    def get_tutor(self, tutor_id: str) -> Optional[Tutor]:
        return self.db.get(Tutor, tutor_id)

    def get_tutors(self, tutor_ids: Iterable[str]) -> Dict[str, Tutor]:
        ids = {str(tutor_id) for tutor_id in tutor_ids}
        if not ids:
            return {}
        try:
            tutors = self.db.query(Tutor).filter(Tutor.id.in_(ids)).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading tutors: {str(e)}")
            raise RepositoryException(f"Failed to load tutors: {str(e)}")
        return {tutor.id: tutor for tutor in tutors}

    def get_courses(self, course_ids: Iterable[str]) -> Dict[str, Course]:
        ids = {str(course_id) for course_id in course_ids}
        if not ids:
            return {}
        try:
            courses = self.db.query(Course).filter(Course.id.in_(ids)).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading courses: {str(e)}")
            raise RepositoryException(f"Failed to load courses: {str(e)}")
        return {course.id: course for course in courses}
