from .config import BuildOptions
from .errors import CycleError, MkError, NoRuleError, ParseError, RecipeFailure
from .graph import build_graph
from .model import Attribute, Node, Status
from .parser import parse_file, parse_text
from .runner import plan, run_build
from .scheduler import BuildReport, Scheduler

__all__ = [
    "BuildOptions",
    "CycleError",
    "MkError",
    "NoRuleError",
    "ParseError",
    "RecipeFailure",
    "build_graph",
    "Attribute",
    "Node",
    "Status",
    "parse_file",
    "parse_text",
    "plan",
    "run_build",
    "BuildReport",
    "Scheduler",
]
