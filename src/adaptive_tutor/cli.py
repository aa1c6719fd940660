from __future__ import annotations

import asyncio
from pathlib import Path
from typing import List, Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from adaptive_tutor.data_models import Recommendation, RecommendationStatus
from adaptive_tutor.errors import TutoringError
from adaptive_tutor.system import TutoringSystem
from adaptive_tutor.tutoring import TurnResult, TurnStatus

app = typer.Typer(help="Adaptive tutoring engine: guided sessions and learning recommendations.")
console = Console()

EXIT_WORDS = {"exit", "quit", ":q"}

candidate_paths = [Path.cwd() / ".env", Path(__file__).resolve().parents[2] / ".env"]
for env_path in candidate_paths:
    if env_path.exists():
        load_dotenv(dotenv_path=env_path, override=False)
        break


def _load_system(config: Optional[Path], data_dir: Optional[Path], api_key: Optional[str] = None) -> TutoringSystem:
    """Instantiate `TutoringSystem` with optional config and storage overrides."""
    return TutoringSystem.from_config(config, data_dir=data_dir, api_key=api_key)


def _render_turn(turn: TurnResult) -> None:
    if turn.last_score is not None:
        console.print(f"[dim]Last answer scored {turn.last_score:.2f}[/dim]")
    if turn.degraded:
        console.print("[yellow]Progress could not be saved; continuing without it.[/yellow]")
    if turn.support_text:
        console.print(f"[cyan]Think of it this way:[/cyan] {turn.support_text}")
    if turn.visual_aid:
        console.print(f"[magenta]Picture it:[/magenta] {turn.visual_aid}")
    if turn.question_text:
        marker = " [dim](again)[/dim]" if turn.repeated_question else ""
        console.print(f"[bold]Q{marker}:[/bold] {turn.question_text}")


def _render_recommendations(rows: List[Recommendation]) -> None:
    if not rows:
        console.print("No recommendations.")
        return
    table = Table(title="Recommendations")
    for column in ("id", "type", "concept", "priority", "urgency", "status", "title"):
        table.add_column(column)
    for row in rows:
        table.add_row(
            row.recommendation_id[:8],
            row.type.value,
            row.concept_id or "-",
            str(row.priority),
            row.urgency.value,
            row.status.value,
            row.title,
        )
    console.print(table)


async def _tutor_loop(system: TutoringSystem, learner_id: str, concept: Optional[str], subject: Optional[str]) -> TurnResult:
    manager = system.sessions
    turn = manager.start_session(learner_id, concept_hint=concept, subject=subject, device_type="cli")
    console.print(f"[green]Session on {turn.concept_id}[/green] (type 'exit' to stop)")
    while turn.status is not TurnStatus.SESSION_ENDED:
        if turn.status is TurnStatus.AWAITING_SCORE:
            console.print("[dim]Scoring your answer...[/dim]")
            await asyncio.sleep(1)
            turn = await manager.poll(turn.session_id)
            continue
        _render_turn(turn)
        answer = await asyncio.to_thread(console.input, "> ")
        if answer.strip().lower() in EXIT_WORDS:
            turn = await manager.end_session(turn.session_id)
            break
        turn = await manager.submit_response(turn.session_id, turn.interaction_id, answer)
    return turn


@app.command()
def session(
    learner_id: str = typer.Argument(..., help="Learner identifier."),
    concept: Optional[str] = typer.Option(None, help="Concept to practise; chosen automatically if omitted."),
    subject: Optional[str] = typer.Option(None, help="Restrict concept choice to a subject."),
    config: Optional[Path] = typer.Option(None, help="Path to configuration YAML."),
    data_dir: Optional[Path] = typer.Option(None, help="Store all data under this directory."),
    api_key: Optional[str] = typer.Option(None, help="OpenAI API key for the openai scorer."),
):
    """
    Run an interactive tutoring session in the terminal.

    Questions, analogies and scores are rendered with Rich; the session ends on the
    turn limit, the remediation cap, or when the learner types `exit`.
    """
    system = _load_system(config, data_dir, api_key)
    try:
        final = asyncio.run(_tutor_loop(system, learner_id, concept, subject))
    except TutoringError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    reason = final.end_reason.value if final.end_reason else "ended"
    console.print(f"[green]Session finished ({reason}).[/green]")
    _render_recommendations(system.recommendations.get_recommendations(learner_id, RecommendationStatus.PENDING))


@app.command()
def recommend(
    learner_id: str = typer.Argument(...),
    generate: bool = typer.Option(False, help="Regenerate before listing."),
    status: Optional[RecommendationStatus] = typer.Option(None, help="Only show this status."),
    config: Optional[Path] = typer.Option(None),
    data_dir: Optional[Path] = typer.Option(None),
):
    """List (and optionally regenerate) a learner's recommendations."""
    system = _load_system(config, data_dir)
    try:
        if generate:
            system.recommendations.generate_for(learner_id)
        rows = system.recommendations.get_recommendations(learner_id, status)
    except TutoringError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    _render_recommendations(rows)


@app.command()
def feedback(
    recommendation_id: str = typer.Argument(...),
    accept: bool = typer.Option(True, "--accept/--dismiss", help="Accept or dismiss the recommendation."),
    config: Optional[Path] = typer.Option(None),
    data_dir: Optional[Path] = typer.Option(None),
):
    """Accept or dismiss a pending recommendation."""
    system = _load_system(config, data_dir)
    status = RecommendationStatus.ACCEPTED if accept else RecommendationStatus.DISMISSED
    try:
        row = system.recommendations.record_feedback(recommendation_id, status)
    except TutoringError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    console.print(f"Recommendation {row.recommendation_id} marked {row.status.value}.")


@app.command()
def catalog(
    subject: Optional[str] = typer.Option(None, help="Only list this subject."),
    config: Optional[Path] = typer.Option(None),
    data_dir: Optional[Path] = typer.Option(None),
):
    """Show the concepts the catalog can tutor."""
    system = _load_system(config, data_dir)
    table = Table(title="Concept catalog")
    for column in ("concept", "subject", "tier", "questions"):
        table.add_column(column)
    for concept_id in system.catalog.concept_ids():
        entry = system.catalog.lookup(concept_id, subject)
        if entry is None or (subject and entry.subject != subject):
            continue
        table.add_row(concept_id, entry.subject, entry.difficulty_tier.value, str(len(entry.guiding_questions)))
    console.print(table)


@app.command()
def batch(
    forever: bool = typer.Option(False, help="Keep running every batch interval."),
    config: Optional[Path] = typer.Option(None),
    data_dir: Optional[Path] = typer.Option(None),
):
    """Expire stale recommendations and regenerate them for every learner."""
    system = _load_system(config, data_dir)
    if forever:
        console.print(f"Running every {system.scheduler.interval_hours} hours; Ctrl+C to stop.")
        asyncio.run(system.scheduler.run_forever())
        return
    results = system.scheduler.run_once()
    console.print(f"Generated recommendations for {len(results)} learners.")


if __name__ == "__main__":
    app()
