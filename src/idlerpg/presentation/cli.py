from __future__ import annotations

import argparse
import shlex
from typing import Any, Callable, Dict, List, Optional, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from idlerpg.application.dtos import CombatResult, FinalizedLedger, PollView, RiskView
from idlerpg.application.services.engine_service import ActivityEngine
from idlerpg.domain.errors import EngineError
from idlerpg.domain.models.activity import ActivityKind, RewardLedger
from idlerpg.domain.models.character import Character


_BORDER_ACTIVITY = "yellow"
_BORDER_COMBAT = "red"
_BORDER_CHARACTER = "green"
_BORDER_RISK = "magenta"
_BORDER_EVENT = "cyan"

_RISK_STYLES = {"low": "green", "moderate": "yellow", "high": "red", "extreme": "bold red"}

_KINDS = [kind.value for kind in ActivityKind]

Handler = Callable[[ActivityEngine, argparse.Namespace, Console], None]


def _ornate_title(title: str) -> str:
    return f"[bold yellow]{title}[/bold yellow]"


def _ledger_lines(ledger: RewardLedger) -> List[str]:
    lines = []
    if ledger.gold:
        lines.append(f"Gold: {ledger.gold:+d}")
    if ledger.experience:
        lines.append(f"Experience: {ledger.experience:+d}")
    if ledger.health:
        lines.append(f"Health: {ledger.health:+d}")
    for item_id, quantity in sorted(ledger.items.items()):
        lines.append(f"{item_id} x{quantity}")
    for skill, amount in sorted(ledger.skill_xp.items()):
        lines.append(f"{skill} xp +{amount}")
    for landmark_id in ledger.discoveries:
        lines.append(f"Discovered: {landmark_id}")
    return lines or ["[dim]nothing yet[/dim]"]


def render_character(console: Console, character: Character) -> None:
    table = Table(show_header=False, box=None)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Id", str(character.id))
    table.add_row("Level", f"{character.level} ({character.xp} xp)")
    table.add_row("Health", f"{character.health}/{character.max_health}" + ("" if character.alive else " [red](dead)[/red]"))
    table.add_row("Gold", str(character.gold))
    table.add_row("Zone", character.zone_id or "[dim]on the road[/dim]")
    table.add_row("Skills", ", ".join(f"{s} {character.skill_level(s)}" for s in sorted(character.skills)) or "-")
    table.add_row("Inventory", ", ".join(f"{i} x{q}" for i, q in sorted(character.inventory.items())) or "-")
    table.add_row("Discoveries", ", ".join(character.discoveries) or "-")
    console.print(Panel.fit(table, title=_ornate_title(character.name), border_style=_BORDER_CHARACTER))


def render_poll(console: Console, view: PollView) -> None:
    lines = [
        f"[bold]{view.kind.title()}[/bold] session {view.session_id} - {view.status}",
        f"Progress: {view.progress:.2f}% (marker {view.marker}, {view.time_spent}s elapsed)",
    ]
    for reward in view.rewards:
        detail = reward.get("label") or ", ".join(f"{k} x{v}" for k, v in sorted(reward.get("items", {}).items()))
        lines.append(f"  [green]+[/green] {reward['progress']}%: {detail} (gold {reward.get('gold', 0)})")
    for landmark_id in view.discoveries:
        lines.append(f"  [cyan]Discovered[/cyan] {landmark_id}")
    if view.failed:
        lines.append(f"[red]Failed:[/red] {view.failed['reason']}")
    if view.completed:
        lines.append("[bold green]Completed![/bold green]")
    if view.restarted_session_id is not None:
        lines.append(f"Auto-repeat started session {view.restarted_session_id}")
    lines.append("")
    lines.append("[bold]Ledger[/bold]")
    lines.extend(_ledger_lines(view.ledger))
    console.print(Panel.fit("\n".join(lines), title=_ornate_title("Activity"), border_style=_BORDER_ACTIVITY))
    if view.event:
        choices = "\n".join(f"- [bold]{c['key']}[/bold]: {c['text']}" for c in view.event.get("choices", []))
        console.print(
            Panel.fit(
                f"{view.event.get('description', '')}\n\n{choices}",
                title=_ornate_title(str(view.event.get("title", "Event"))),
                border_style=_BORDER_EVENT,
            )
        )


def render_finalized(console: Console, ledger: FinalizedLedger) -> None:
    lines = [f"[bold]{ledger.kind.title()}[/bold] session {ledger.session_id} ended {ledger.status} at {ledger.progress}%"]
    if ledger.failure_reason:
        lines.append(f"[red]{ledger.failure_reason}[/red]")
    lines.extend(_ledger_lines(ledger.ledger))
    console.print(Panel.fit("\n".join(lines), title=_ornate_title("Settled"), border_style=_BORDER_ACTIVITY))


def render_risk(console: Console, risk: RiskView) -> None:
    style = _RISK_STYLES.get(risk.band, "white")
    lines = [
        f"Zone: {risk.zone_id}",
        f"Expedition: {risk.expedition_type or 'open exploration'} ({risk.duration_seconds}s)",
        f"Failure chance: [{style}]{risk.failure_probability:.1f}% ({risk.band})[/{style}]",
        risk.description,
    ]
    if not risk.risk_bearing:
        lines.append("[dim]Open exploration never fails its risk roll.[/dim]")
    console.print(Panel.fit("\n".join(lines), title=_ornate_title("Risk Assessment"), border_style=_BORDER_RISK))


def render_combat_result(console: Console, result: CombatResult) -> None:
    headline = "[bold green]Victory![/bold green]" if result.victory else "[bold red]Defeat[/bold red]"
    lines = [
        headline,
        f"Turns: {result.turns}  Dealt: {result.damage_dealt}  Taken: {result.damage_taken}",
    ]
    if result.victory:
        lines.append(f"Experience: +{result.experience}  Gold: +{result.gold}")
        if result.loot:
            lines.append("Loot: " + ", ".join(result.loot))
    elif result.penalty:
        lines.append(f"Penalty: {result.penalty}")
    if result.combat_skill_xp:
        lines.append("Skills: " + ", ".join(f"{k} +{v}" for k, v in sorted(result.combat_skill_xp.items())))
    console.print(Panel.fit("\n".join(lines), title=_ornate_title("Combat"), border_style=_BORDER_COMBAT))


def _history_table(rows: Sequence[Dict[str, Any]], columns: Sequence[str], title: str) -> Table:
    table = Table(title=title)
    for column in columns:
        table.add_column(column.replace("_", " ").title())
    for row in rows:
        table.add_row(*[str(row.get(column, "")) for column in columns])
    return table


# handlers


def _cmd_create(engine: ActivityEngine, args: argparse.Namespace, console: Console) -> None:
    character = engine.create_character(args.name, zone_id=args.zone)
    render_character(console, character)


def _cmd_show(engine: ActivityEngine, args: argparse.Namespace, console: Console) -> None:
    character = engine.characters.get(args.character_id)
    if character is None:
        console.print(f"[red]No character with id {args.character_id}[/red]")
        return
    render_character(console, character)


def _cmd_give(engine: ActivityEngine, args: argparse.Namespace, console: Console) -> None:
    character = engine.characters.get(args.character_id)
    if character is None:
        console.print(f"[red]No character with id {args.character_id}[/red]")
        return
    character.inventory[args.item_id] = character.item_quantity(args.item_id) + args.quantity
    engine.characters.save(character)
    console.print(f"Gave {args.quantity} x {args.item_id} to {character.name}.")


def _cmd_zones(engine: ActivityEngine, args: argparse.Namespace, console: Console) -> None:
    table = Table(title="Zones")
    table.add_column("Id")
    table.add_column("Name")
    table.add_column("Danger", justify="right")
    table.add_column("Min Level", justify="right")
    table.add_column("Routes")
    for zone in engine.world.list_zones():
        routes = ", ".join(
            f"{c.to_zone_id} ({c.base_travel_seconds}s {c.connection_type.value})"
            for c in engine.world.list_connections(zone.id)
        )
        table.add_row(zone.id, zone.name, str(zone.danger_level), str(zone.required_level), routes)
    console.print(table)


def _cmd_travel(engine: ActivityEngine, args: argparse.Namespace, console: Console) -> None:
    session = engine.start_travel_intent(args.character_id, args.destination, weather=args.weather)
    console.print(
        f"Travelling to [bold]{args.destination}[/bold]: {session.config['duration_seconds']}s "
        f"(session {session.session_id})"
    )


def _cmd_explore(engine: ActivityEngine, args: argparse.Namespace, console: Console) -> None:
    session = engine.start_exploration_intent(
        args.character_id,
        zone_id=args.zone,
        expedition_type=args.type,
        supplies=args.supply or (),
        auto_stop_at=args.auto_stop,
    )
    if session.status.value == "failed":
        console.print(f"[red]The expedition failed before it began:[/red] {session.failure_reason}")
        console.print("Poll or stop the session to collect the partial rewards.")
        return
    console.print(
        f"Exploring [bold]{session.config['zone_id']}[/bold] for {session.config['duration_seconds']:.0f}s "
        f"(session {session.session_id})"
    )


def _cmd_craft(engine: ActivityEngine, args: argparse.Namespace, console: Console) -> None:
    session = engine.start_crafting_intent(
        args.character_id, args.recipe_id, quantity=args.quantity, auto_repeat=args.auto_repeat
    )
    total = session.config["crafting_seconds"] * session.config["quantity_goal"]
    console.print(f"Crafting {session.config['quantity_goal']} x {args.recipe_id}: {total}s (session {session.session_id})")


def _cmd_poll(engine: ActivityEngine, args: argparse.Namespace, console: Console) -> None:
    render_poll(console, engine.poll_activity_intent(args.character_id, args.kind))


def _cmd_stop(engine: ActivityEngine, args: argparse.Namespace, console: Console) -> None:
    render_finalized(console, engine.stop_activity_intent(args.character_id, args.kind))


def _cmd_cancel(engine: ActivityEngine, args: argparse.Namespace, console: Console) -> None:
    engine.cancel_activity_intent(args.character_id, args.kind)
    console.print(f"{args.kind.title()} cancelled.")


def _cmd_resolve(engine: ActivityEngine, args: argparse.Namespace, console: Console) -> None:
    view = engine.resolve_activity_event_intent(args.character_id, args.kind, args.choice)
    style = "green" if view.success else "red"
    lines = [f"[{style}]{view.message}[/{style}]", *_ledger_lines(view.rewards)]
    if view.enemy_id:
        lines.append(f"Start the fight with: fight {args.character_id} {view.enemy_id}")
    console.print(Panel.fit("\n".join(lines), title=_ornate_title(view.event_key), border_style=_BORDER_EVENT))


def _cmd_assess(engine: ActivityEngine, args: argparse.Namespace, console: Console) -> None:
    render_risk(console, engine.assess_expedition_risk_intent(args.character_id, args.zone_id, args.type))


def _cmd_fight(engine: ActivityEngine, args: argparse.Namespace, console: Console) -> None:
    engine.start_combat_intent(args.character_id, args.enemy_id)
    if args.manual:
        console.print("Combat started. Use 'turn' to act and 'flee' to give up.")
        return
    render_combat_result(console, engine.auto_fight_intent(args.character_id, style=args.style))


def _cmd_turn(engine: ActivityEngine, args: argparse.Namespace, console: Console) -> None:
    view = engine.execute_combat_turn_intent(args.character_id, style=args.style)
    combat = view.combat
    for entry in [e for e in combat["combat_log"] if e["turn"] == combat["turn"] or view.is_over][-3:]:
        console.print(entry["message"])
    console.print(
        f"You: {combat['player_health']}/{combat['player_starting_health']}  "
        f"Enemy: {combat['enemy_health']}/{combat['enemy_starting_health']}"
    )
    if view.is_over:
        render_combat_result(console, engine.end_combat_intent(args.character_id, bool(view.victory)))


def _cmd_flee(engine: ActivityEngine, args: argparse.Namespace, console: Console) -> None:
    result = engine.abandon_combat_intent(args.character_id)
    if result is None:
        console.print("Nothing to flee from.")
        return
    render_combat_result(console, result)


def _cmd_history(engine: ActivityEngine, args: argparse.Namespace, console: Console) -> None:
    if args.combat:
        rows = engine.combat_history_intent(args.character_id, limit=args.limit)
        console.print(_history_table(rows, ("enemy_id", "victory", "turns", "experience", "gold", "ended_at"), "Combat History"))
        return
    rows = engine.activity_history_intent(args.character_id, args.kind)
    flattened = [dict(row, gold=row["ledger"]["gold"], experience=row["ledger"]["experience"]) for row in rows]
    console.print(
        _history_table(
            flattened[-args.limit:],
            ("session_id", "kind", "status", "marker", "gold", "experience", "finalized_at"),
            "Activity History",
        )
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="idlerpg", description="Idle RPG activity engine")
    sub = parser.add_subparsers(dest="command")

    def _add(name: str, handler: Handler, help_text: str) -> argparse.ArgumentParser:
        command = sub.add_parser(name, help=help_text)
        command.set_defaults(handler=handler)
        return command

    create = _add("create", _cmd_create, "Create a character")
    create.add_argument("name")
    create.add_argument("--zone", default="greenwood_village")

    show = _add("show", _cmd_show, "Show a character")
    show.add_argument("character_id", type=int)

    give = _add("give", _cmd_give, "Put items in a character's inventory")
    give.add_argument("character_id", type=int)
    give.add_argument("item_id")
    give.add_argument("quantity", type=int, nargs="?", default=1)

    _add("zones", _cmd_zones, "List zones and routes")

    travel = _add("travel", _cmd_travel, "Start travelling to a connected zone")
    travel.add_argument("character_id", type=int)
    travel.add_argument("destination")
    travel.add_argument("--weather", choices=("clear", "fog", "blizzard"), default=None)

    explore = _add("explore", _cmd_explore, "Start exploring or an expedition")
    explore.add_argument("character_id", type=int)
    explore.add_argument("--zone", default=None)
    explore.add_argument("--type", choices=("scout", "standard", "deep", "legendary"), default=None)
    explore.add_argument("--supply", action="append")
    explore.add_argument("--auto-stop", type=int, default=None)

    craft = _add("craft", _cmd_craft, "Start a crafting batch")
    craft.add_argument("character_id", type=int)
    craft.add_argument("recipe_id")
    craft.add_argument("--quantity", type=int, default=1)
    craft.add_argument("--auto-repeat", action="store_true")

    for name, handler, help_text in (
        ("poll", _cmd_poll, "Advance and show an activity"),
        ("stop", _cmd_stop, "Stop an activity and settle it"),
        ("cancel", _cmd_cancel, "Cancel an activity"),
    ):
        command = _add(name, handler, help_text)
        command.add_argument("character_id", type=int)
        command.add_argument("kind", choices=_KINDS)

    resolve = _add("resolve", _cmd_resolve, "Answer a pending activity event")
    resolve.add_argument("character_id", type=int)
    resolve.add_argument("kind", choices=_KINDS)
    resolve.add_argument("choice")

    assess = _add("assess", _cmd_assess, "Assess expedition risk")
    assess.add_argument("character_id", type=int)
    assess.add_argument("zone_id")
    assess.add_argument("--type", choices=("scout", "standard", "deep", "legendary"), default=None)

    fight = _add("fight", _cmd_fight, "Fight an enemy")
    fight.add_argument("character_id", type=int)
    fight.add_argument("enemy_id")
    fight.add_argument("--style", choices=("melee", "magic", "ranged"), default="melee")
    fight.add_argument("--manual", action="store_true", help="Start the fight and take turns yourself")

    turn = _add("turn", _cmd_turn, "Take one combat turn")
    turn.add_argument("character_id", type=int)
    turn.add_argument("--style", choices=("melee", "magic", "ranged"), default="melee")

    flee = _add("flee", _cmd_flee, "Abandon the current fight")
    flee.add_argument("character_id", type=int)

    history = _add("history", _cmd_history, "Show finished activities or fights")
    history.add_argument("character_id", type=int)
    history.add_argument("--kind", choices=_KINDS, default=None)
    history.add_argument("--combat", action="store_true")
    history.add_argument("--limit", type=int, default=10)

    return parser


def run_command(engine: ActivityEngine, argv: Sequence[str], console: Console | None = None) -> int:
    console = console or Console()
    parser = build_parser()
    try:
        args = parser.parse_args(list(argv))
    except SystemExit as exc:
        return int(exc.code or 0)
    handler: Optional[Handler] = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return 0
    try:
        handler(engine, args, console)
    except EngineError as exc:
        console.print(f"[red]{type(exc).__name__}:[/red] {exc}")
        return 1
    return 0


def interactive_shell(engine: ActivityEngine, console: Console | None = None) -> None:
    console = console or Console()
    console.print(
        Panel.fit(
            "Type a command (e.g. [bold]create Aria[/bold], [bold]travel 1 whispering_forest[/bold], "
            "[bold]poll 1 travel[/bold]).\n'help' lists commands, 'quit' exits.",
            title=_ornate_title("Idle RPG"),
            border_style=_BORDER_ACTIVITY,
        )
    )
    while True:
        try:
            line = console.input("[bold yellow]>[/bold yellow] ").strip()
        except EOFError:
            break
        if not line:
            continue
        if line in {"quit", "exit", "q"}:
            break
        try:
            argv = ["--help"] if line == "help" else shlex.split(line)
        except ValueError as exc:
            console.print(f"[red]{exc}[/red]")
            continue
        run_command(engine, argv, console)


def main(engine: ActivityEngine, argv: Sequence[str] | None = None) -> int:
    if not argv:
        interactive_shell(engine)
        return 0
    return run_command(engine, argv)
