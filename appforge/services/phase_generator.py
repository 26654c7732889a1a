# FILE: appforge/services/phase_generator.py

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from appforge.core.config import COMPONENT_MAX_TOKENS, PHASE_MAX_RETRIES, PHASE_MAX_TOKENS
from appforge.repair.file_fixer import validate_and_fix_files
from appforge.services.prompt_service import build_components_prompt, build_phase_prompt, build_system_prompt
from appforge.validators.multi_file import count_lines, parse_multi_file_response
from appforge.validators.phase_validator import check_phase, validate_phase_files

logger = logging.getLogger("appforge.phases")


@dataclass
class PhaseResult:
    phase: str
    files: Dict[str, str]
    stats: Dict[str, Any]
    fixes: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return bool(self.stats.get("valid"))


async def generate_phase(
        phase: str,
        config: Dict[str, Any],
        engine,
        retry_count: int = 0,
        max_retries: int = PHASE_MAX_RETRIES,
) -> PhaseResult:
    """
    One phase, regenerated from scratch while critical files are missing.
    Engine errors propagate untouched; only missing files trigger a retry.
    """
    check_phase(phase)
    logger.info(f"Generating {phase} phase (attempt {retry_count + 1}/{max_retries + 1})")

    result = await engine.generate(
        build_phase_prompt(phase, config),
        system_prompt=build_system_prompt(),
        max_tokens=PHASE_MAX_TOKENS,
    )
    files = parse_multi_file_response(result.content)
    validation = validate_phase_files(phase, files)

    if not validation["valid"] and retry_count < max_retries:
        logger.warning(
            f"Missing critical files: {', '.join(validation['missing'])}. "
            f"Retrying {phase} phase (attempt {retry_count + 2}/{max_retries + 1})"
        )
        return await generate_phase(phase, config, engine, retry_count + 1, max_retries)

    if not validation["valid"]:
        logger.error(
            f"{phase}: critical files still missing after {retry_count + 1} attempts: "
            f"{', '.join(validation['missing'])}"
        )

    stats = {
        "phase": phase,
        "files_generated": len(files),
        "lines": count_lines(files),
        "input_tokens": result.input_tokens,
        "output_tokens": result.output_tokens,
        "elapsed_ms": result.elapsed_ms,
        "attempts": retry_count + 1,
        "valid": validation["valid"],
        "missing": validation["missing"],
    }
    logger.info(f"{phase}: {stats['files_generated']} files, {stats['lines']} lines")
    return PhaseResult(phase=phase, files=files, stats=stats)


async def generate_single_phase(phase: str, config: Dict[str, Any], engine) -> PhaseResult:
    result = await generate_phase(phase, config, engine)
    report = validate_and_fix_files(result.files, config)
    if report.applied_fixes:
        logger.info(f"Applied {len(report.applied_fixes)} fixes to {phase} phase")

    stats = dict(result.stats)
    stats["files_generated"] = len(report.files)
    stats["lines"] = count_lines(report.files)
    return PhaseResult(
        phase=phase,
        files=report.files,
        stats=stats,
        fixes=report.applied_fixes,
        warnings=report.warnings,
    )


async def generate_components(
        components: List[str],
        project_name: str,
        description: str,
        engine,
) -> Dict[str, str]:
    """Incremental generation of a handful of named components."""
    if not components:
        raise ValueError("At least one component is required")
    result = await engine.generate(
        build_components_prompt(components, project_name, description),
        system_prompt=build_system_prompt(),
        max_tokens=COMPONENT_MAX_TOKENS,
    )
    return parse_multi_file_response(result.content)
