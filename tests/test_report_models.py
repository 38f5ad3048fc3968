"""Tests for report and history models."""

import uuid

import pytest
from pydantic import ValidationError

from edugrade.models.report import GradeItem, HistoryLog, Report, StudentInfo, round_half_up


def make_report(percentage: int = 50, **overrides) -> Report:
    fields = dict(
        id=uuid.uuid4(),
        timestamp=1_700_000_000_000,
        student_info=StudentInfo(name="Ravi", subject="Physics"),
        grades=(GradeItem(question_number="1", marks_obtained=percentage, total_marks=100),),
        total_score=percentage,
        max_score=100,
        percentage=percentage,
    )
    fields.update(overrides)
    return Report(**fields)


class TestGradeItem:

    @pytest.mark.parametrize("obtained,total,band", [
        (8, 10, "strong"),
        (10, 10, "strong"),
        (4, 10, "partial"),
        (7.9, 10, "partial"),
        (3.9, 10, "weak"),
        (0, 10, "weak"),
        (0, 0, "weak"),
    ])
    def test_performance_band(self, obtained, total, band):
        item = GradeItem(question_number="1", marks_obtained=obtained, total_marks=total)

        assert item.performance == band

    def test_marks_cannot_exceed_total(self):
        with pytest.raises(ValidationError):
            GradeItem(question_number="1", marks_obtained=3, total_marks=2)

    def test_infinite_marks_rejected(self):
        with pytest.raises(ValidationError):
            GradeItem(question_number="1", marks_obtained=1, total_marks=float("inf"))

    def test_accepts_camel_case_input(self):
        item = GradeItem.model_validate({"questionNumber": "2(a)", "marksObtained": 1, "totalMarks": 2})

        assert item.question_number == "2(a)"

    @pytest.mark.parametrize("marks", ["1", "1.5", True])
    def test_marks_must_be_json_numbers(self, marks):
        with pytest.raises(ValidationError):
            GradeItem.model_validate({"questionNumber": "1", "marksObtained": marks, "totalMarks": 2})

    def test_integer_marks_are_floats(self):
        item = GradeItem.model_validate({"questionNumber": "1", "marksObtained": 1, "totalMarks": 2})

        assert isinstance(item.marks_obtained, float)

    def test_is_immutable(self):
        item = GradeItem(question_number="1", marks_obtained=1, total_marks=2)

        with pytest.raises(ValidationError):
            item.marks_obtained = 2


class TestStudentInfo:

    def test_class_uses_wire_name(self):
        info = StudentInfo.model_validate({"name": "Ravi", "class": "10-B", "examName": "Midterm"})

        dumped = info.model_dump(by_alias=True)
        assert info.class_name == "10-B"
        assert dumped["class"] == "10-B"
        assert dumped["examName"] == "Midterm"

    def test_numeric_roll_number_becomes_text(self):
        assert StudentInfo.model_validate({"rollNumber": 17}).roll_number == "17"


class TestReport:

    def test_remaining_marks(self):
        report = make_report(total_score=35, max_score=50, percentage=70)

        assert report.remaining_marks == 15

    def test_json_dict_uses_camel_case(self):
        report = make_report()

        data = report.to_json_dict()

        assert data["id"] == str(report.id)
        assert data["studentInfo"]["name"] == "Ravi"
        assert data["grades"][0]["marksObtained"] == 50
        assert {"totalScore", "maxScore", "percentage", "generalFeedback", "timestamp"} <= set(data)

    def test_json_dict_round_trips(self):
        report = make_report()

        assert Report.model_validate(report.to_json_dict()) == report


class TestHistoryLog:

    def test_empty_log(self):
        log = HistoryLog()

        assert len(log) == 0
        assert list(log) == []
        assert log.average_percentage == 0

    def test_average_percentage(self):
        log = HistoryLog(reports=(make_report(60), make_report(75), make_report(80)))

        assert log.average_percentage == 72

    def test_average_percentage_rounds_half_up(self):
        log = HistoryLog(reports=(make_report(62), make_report(63)))

        assert log.average_percentage == 63

    @pytest.mark.parametrize("value,expected", [
        (0.5, 1),
        (2.5, 3),
        (12.5, 13),
        (62.5, 63),
        (62.4999, 62),
        (99.5, 100),
    ])
    def test_round_half_up(self, value, expected):
        assert round_half_up(value) == expected

    def test_get_by_id(self):
        wanted = make_report(90)
        log = HistoryLog(reports=(make_report(10), wanted))

        assert log.get(wanted.id) is wanted
        assert log.get(uuid.uuid4()) is None
        assert log.ids == [r.id for r in log.reports]
