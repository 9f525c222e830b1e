"""Interpreter Agent — plain-English reading of a simulation run's results."""

from __future__ import annotations

import os

import anthropic

from citysim.core.simulation_spec import ResultsInterpretation, SimulationRun

MODEL = os.environ.get("CITYSIM_MODEL", "claude-sonnet-4-5-20250929")

INTERPRETER_SYSTEM_PROMPT = """You are an urban planning expert. Your task is to interpret the results of a smart city simulation for a planning team.

You will receive:
1. The project type and location
2. The four simulation parameters (road infrastructure, population density, housing development, public transportation), each on a 0-100 scale
3. The four simulated outcomes (congestion, resident satisfaction, emissions, transit usage), each on a 0-100 scale

Guidelines:
- Lower congestion and emissions are better; higher satisfaction and transit usage are better
- Be specific: reference the actual numbers
- Insights should explain which parameters most plausibly drive each outcome
- Improvements should be concrete parameter adjustments
- Comparisons should relate the results to typical cities of the same kind

You MUST call the submit_interpretation tool with the complete interpretation."""


def _format_run(run: SimulationRun, project_type: str, location: str) -> str:
    p = run.parameters
    r = run.results
    return (
        f"<project>\nName: {run.name}\nType: {project_type}\nLocation: {location or 'unspecified'}\n</project>\n\n"
        "<parameters>\n"
        f"Road Infrastructure: {p.roads:g}/100\n"
        f"Population Density: {p.population:g}/100\n"
        f"Housing Development: {p.housing:g}/100\n"
        f"Public Transportation: {p.public_transport:g}/100\n"
        "</parameters>\n\n"
        "<results>\n"
        f"Congestion: {r.congestion:.1f}\n"
        f"Satisfaction: {r.satisfaction:.1f}\n"
        f"Emissions: {r.emissions:.1f}\n"
        f"Transit Usage: {r.transit_usage:.1f}\n"
        "</results>"
    )


def interpret_results(
    run: SimulationRun,
    project_type: str = "urban development",
    location: str = "",
) -> ResultsInterpretation:
    """Ask the model for a summary, insights, improvements and comparisons.

    Args:
        run: The simulation run to interpret.
        project_type: Kind of project, e.g. "transit corridor".
        location: City or district name.

    Returns:
        ResultsInterpretation with the structured answer.
    """
    client = anthropic.Anthropic()

    with client.messages.stream(
        model=MODEL,
        max_tokens=2048,
        system=INTERPRETER_SYSTEM_PROMPT,
        messages=[{"role": "user", "content": _format_run(run, project_type, location)}],
        tools=[{
            "name": "submit_interpretation",
            "description": "Submit the results interpretation. You MUST use this tool.",
            "input_schema": ResultsInterpretation.model_json_schema(),
        }],
    ) as stream:
        response = stream.get_final_message()

    for block in response.content:
        if block.type == "tool_use" and block.name == "submit_interpretation":
            return ResultsInterpretation.model_validate(block.input)

    raise ValueError("No submit_interpretation tool_use block found in response")
