from .job import Job
from .job_event import JobEvent
from .job_part import JobPart
from .job_comment import JobComment
from .serial_sequence import SerialSequence

__all__ = ["Job", "JobEvent", "JobPart", "JobComment", "SerialSequence"]
