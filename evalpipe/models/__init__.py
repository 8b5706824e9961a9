from .group import Group
from .activity import Activity
from .question import Question
from .response import Response
from .evaluation import EvaluationResult
# base and mixins are imported by the above as needed
