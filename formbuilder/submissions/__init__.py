"""Form Builder Submissions — submission models, captcha, submission store."""

from formbuilder.submissions.models import Submission, SubmissionFormSnapshot

__all__ = ["Submission", "SubmissionFormSnapshot"]
