"""
certflow: Safety-Certification Workflow Service
Step executors: one class per generating workflow phase.

Executors:
    - document_processor: source documents → document sections
    - hazard_extractor: sections → hazards (PHA)
    - requirement_extractor: sections + hazards → safety requirements
    - ce_generator: sections → certifiable element hierarchy
    - traceability_engine: hazard → requirement → CE links
    - conformance_generator: framework conformance checklist
    - test_generator: requirements → verification test cases
    - final_apply: approved artifacts → project tables
"""

from certflow.ai.executors.base import StepExecutor
from certflow.ai.executors.ce_generator import CEStructureGenerator
from certflow.ai.executors.conformance_generator import FRAMEWORK_PHASES, ConformanceGenerator
from certflow.ai.executors.document_processor import DocumentProcessor
from certflow.ai.executors.final_apply import FinalApplyExecutor
from certflow.ai.executors.hazard_extractor import HazardExtractor
from certflow.ai.executors.requirement_extractor import RequirementExtractor
from certflow.ai.executors.test_generator import TestCaseGenerator
from certflow.ai.executors.traceability_engine import (
    HazardRequirementLinker,
    RequirementCELinker,
    TraceabilityEngine,
)

__all__ = [
    "StepExecutor",
    "DocumentProcessor",
    "HazardExtractor",
    "RequirementExtractor",
    "CEStructureGenerator",
    "TraceabilityEngine",
    "HazardRequirementLinker",
    "RequirementCELinker",
    "ConformanceGenerator",
    "TestCaseGenerator",
    "FinalApplyExecutor",
    "FRAMEWORK_PHASES",
]
