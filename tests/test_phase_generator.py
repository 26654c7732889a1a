import pytest

from appforge.engines import EngineError
from appforge.services.phase_generator import generate_components, generate_phase, generate_single_phase
from appforge.services.prompt_service import build_phase_prompt
from appforge.validators.multi_file import serialize_file_map
from appforge.validators.phase_validator import InvalidPhaseError

from .conftest import BACKEND_FILES, DATABASE_FILES, ScriptedEngine

CONFIG = {
    "name": "Shop Floor",
    "description": "An online shop",
    "features": ["Orders"],
    "integrations": [],
    "multi_tenant": True,
    "authentication": "JWT",
}


@pytest.mark.asyncio
async def test_valid_phase_needs_one_call():
    engine = ScriptedEngine({"database": serialize_file_map(DATABASE_FILES)})

    result = await generate_phase("database", CONFIG, engine)

    assert engine.calls == ["database"]
    assert result.valid
    assert result.files == DATABASE_FILES
    assert result.stats["attempts"] == 1
    assert result.stats["input_tokens"] == 100
    assert result.stats["output_tokens"] == 200


@pytest.mark.asyncio
async def test_missing_critical_files_trigger_retries():
    partial = {k: v for k, v in BACKEND_FILES.items() if k != "backend/src/middleware/auth.js"}
    engine = ScriptedEngine({"backend": [serialize_file_map(partial), serialize_file_map(BACKEND_FILES)]})

    result = await generate_phase("backend", CONFIG, engine)

    assert engine.calls == ["backend", "backend"]
    assert result.valid
    assert result.stats["attempts"] == 2


@pytest.mark.asyncio
async def test_retries_are_bounded():
    engine = ScriptedEngine({"backend": "Sorry, I can't produce files right now."})

    result = await generate_phase("backend", CONFIG, engine, max_retries=2)

    assert engine.calls == ["backend"] * 3
    assert not result.valid
    assert "backend/src/server.js" in result.stats["missing"]
    assert result.stats["attempts"] == 3


@pytest.mark.asyncio
async def test_engine_errors_propagate_without_retry():
    err = EngineError(code="RATE_LIMIT", message="slow down", retryable=True, status_code=429)
    engine = ScriptedEngine({"backend": err})

    with pytest.raises(EngineError):
        await generate_phase("backend", CONFIG, engine)
    assert engine.calls == ["backend"]


@pytest.mark.asyncio
async def test_single_phase_applies_fixes():
    engine = ScriptedEngine({"backend": serialize_file_map(BACKEND_FILES)})

    result = await generate_single_phase("backend", CONFIG, engine)

    assert "backend/.env" not in result.files
    assert result.stats["files_generated"] == len(result.files)
    assert any("bcrypt" in fix for fix in result.fixes)


@pytest.mark.asyncio
async def test_invalid_phase_is_rejected_before_any_call():
    engine = ScriptedEngine({})
    with pytest.raises(InvalidPhaseError):
        await generate_phase("finalizing", CONFIG, engine)
    assert engine.calls == []


@pytest.mark.asyncio
async def test_generate_components():
    engine = ScriptedEngine({"components": serialize_file_map({"frontend/components/Cart.tsx": "export {}"})})

    files = await generate_components(["Cart"], "Shop", "An online shop", engine)

    assert files == {"frontend/components/Cart.tsx": "export {}"}


@pytest.mark.asyncio
async def test_generate_components_requires_names():
    with pytest.raises(ValueError):
        await generate_components([], "Shop", "", ScriptedEngine({}))


def test_phase_prompts_carry_project_details():
    prompt = build_phase_prompt("database", CONFIG)

    assert prompt.startswith("Generation phase: database")
    assert "Shop Floor" in prompt
    assert "organization_id" in prompt
    assert "{{" not in prompt
