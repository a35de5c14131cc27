"""
MedEquip CLI

Command-line interface for the service marketplace workflow engine.
Every command acts on behalf of a registered user given with --as (user id
or email); platform roles come from that user's registration.

Usage:
    medequip init --db marketplace.db
    medequip user register --email admin@medequip.vn --platform-role platform_admin
    medequip org create --as owner@benhvien.vn --name "Bệnh viện Chợ Rẫy" --type hospital
    medequip request create --as staff@benhvien.vn --org <id> --equipment <id> --type repair --description-vi "..."
    medequip quote submit --as tech@suachua.vn --request <id> --provider <id> --amount 1500000
    medequip quote accept --as owner@benhvien.vn --id <quote_id>
    medequip tick
    medequip health
"""

import json
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import typer
from pydantic import BaseModel
from typing_extensions import Annotated

from medequip.identity.models import Identity
from medequip.kernel.errors import MarketplaceError
from medequip.kernel.logging import configure_logging
from medequip.kernel.settings import Settings
from medequip.marketplace import Marketplace

settings = Settings.from_env()

# Logs go to stderr so JSON output on stdout stays parseable
configure_logging(json_output=settings.json_logs, log_level=settings.log_level)

app = typer.Typer(
    name="medequip",
    help="MedEquip - Medical equipment service marketplace",
    add_completion=False,
)

# Sub-apps
user_app = typer.Typer(help="User registration commands")
org_app = typer.Typer(help="Organization and membership commands")
provider_app = typer.Typer(help="Provider registration and verification commands")
request_app = typer.Typer(help="Service request lifecycle commands")
quote_app = typer.Typer(help="Quote negotiation commands")
dispute_app = typer.Typer(help="Dispute and arbitration commands")
audit_app = typer.Typer(help="Audit trail queries")
analytics_app = typer.Typer(help="Platform analytics (platform admins)")

app.add_typer(user_app, name="user")
app.add_typer(org_app, name="org")
app.add_typer(provider_app, name="provider")
app.add_typer(request_app, name="request")
app.add_typer(quote_app, name="quote")
app.add_typer(dispute_app, name="dispute")
app.add_typer(audit_app, name="audit")
app.add_typer(analytics_app, name="analytics")

DbOption = Annotated[Optional[Path], typer.Option("--db", help="Database path")]
ActorOption = Annotated[str, typer.Option("--as", help="Acting user (id or email)")]
JsonOption = Annotated[bool, typer.Option("--json", help="Output as JSON")]


def get_market(db_path: Optional[Path] = None) -> Marketplace:
    """Get Marketplace instance"""
    db = db_path or settings.db_path
    if not db.exists():
        typer.echo(f"Error: Database not found: {db}", err=True)
        typer.echo(f"Run 'medequip init --db {db}' to initialize", err=True)
        raise typer.Exit(1)
    return Marketplace(db)


def acting(market: Marketplace, who: str) -> Identity:
    """Identity of the --as user"""
    user = market.users.get(who) or market.users.get_by_email(who)
    if user is None:
        typer.echo(f"Error: Unknown user: {who}", err=True)
        raise typer.Exit(1)
    return market.identity_for(user["user_id"])


@contextmanager
def reported() -> Iterator[None]:
    """Turn marketplace errors into a message on stderr and exit code 1"""
    try:
        yield
    except MarketplaceError as e:
        typer.echo(f"Error: [{e.code}] {e.message}", err=True)
        raise typer.Exit(1) from e


def emit(data: Any) -> None:
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    typer.echo(json.dumps(data, indent=2, default=str, ensure_ascii=False))


# Initialization command


@app.command()
def init(
    db: Annotated[
        Path,
        typer.Option(help="Database path"),
    ] = settings.db_path,
) -> None:
    """Initialize a new marketplace database"""
    if db.exists():
        typer.echo(f"Error: Database already exists: {db}", err=True)
        raise typer.Exit(1)

    Marketplace(db)
    typer.echo(f"✓ Initialized marketplace database: {db}")


# User commands


@user_app.command("register")
def user_register(
    email: Annotated[str, typer.Option("--email", help="Login email")],
    name: Annotated[Optional[str], typer.Option("--name", help="Display name")] = None,
    platform_role: Annotated[
        Optional[str],
        typer.Option("--platform-role", help="platform_admin or platform_support"),
    ] = None,
    user_id: Annotated[Optional[str], typer.Option("--id", help="Explicit user id")] = None,
    db: DbOption = None,
) -> None:
    """Register a user"""
    market = get_market(db)
    with reported():
        user = market.register_user(
            email=email, name=name, platform_role=platform_role, user_id=user_id
        )

    typer.echo(f"✓ Registered user: {user['user_id']}")
    typer.echo(f"  Email: {user['email']}")
    if user.get("platform_role"):
        typer.echo(f"  Platform role: {user['platform_role']}")


# Organization commands


@org_app.command("create")
def org_create(
    actor: ActorOption,
    name: Annotated[str, typer.Option("--name", help="Organization name")],
    org_type: Annotated[str, typer.Option("--type", help="hospital or provider")],
    db: DbOption = None,
) -> None:
    """Create an organization (you become its owner)"""
    market = get_market(db)
    with reported():
        org = market.create_organization(acting(market, actor), name, org_type)

    typer.echo(f"✓ Created organization: {org['organization_id']}")
    typer.echo(f"  Name: {org['name']}")
    typer.echo(f"  Type: {org['org_type']}")


@org_app.command("list")
def org_list(actor: ActorOption, db: DbOption = None) -> None:
    """List your organizations"""
    market = get_market(db)
    with reported():
        orgs = market.list_organizations(acting(market, actor))

    if not orgs:
        typer.echo("No organizations")
        return

    typer.echo(f"Organizations ({len(orgs)}):")
    for org in orgs:
        typer.echo(f"  {org['organization_id']}: {org['name']} ({org['org_type']})")


@org_app.command("members")
def org_members(
    actor: ActorOption,
    org: Annotated[str, typer.Option("--org", help="Organization ID")],
    db: DbOption = None,
) -> None:
    """List members and their roles"""
    market = get_market(db)
    with reported():
        members = market.list_members(acting(market, actor), org)

    typer.echo(f"Members ({len(members)}):")
    for member in members:
        typer.echo(f"  {member['user_id']}: {member['email']} [{member['role']}]")


@org_app.command("add-member")
def org_add_member(
    actor: ActorOption,
    org: Annotated[str, typer.Option("--org", help="Organization ID")],
    user: Annotated[str, typer.Option("--user", help="User ID")],
    role: Annotated[str, typer.Option("--role", help="owner, admin or member")] = "member",
    db: DbOption = None,
) -> None:
    """Add a registered user to an organization"""
    market = get_market(db)
    with reported():
        market.add_member(acting(market, actor), org, user, role)
    typer.echo(f"✓ Added {user} to {org} as {role}")


@org_app.command("set-role")
def org_set_role(
    actor: ActorOption,
    org: Annotated[str, typer.Option("--org", help="Organization ID")],
    user: Annotated[str, typer.Option("--user", help="User ID")],
    role: Annotated[str, typer.Option("--role", help="owner, admin or member")],
    db: DbOption = None,
) -> None:
    """Change a member's role"""
    market = get_market(db)
    with reported():
        market.update_member_role(acting(market, actor), org, user, role)
    typer.echo(f"✓ {user} is now {role} in {org}")


@org_app.command("remove-member")
def org_remove_member(
    actor: ActorOption,
    org: Annotated[str, typer.Option("--org", help="Organization ID")],
    user: Annotated[str, typer.Option("--user", help="User ID")],
    db: DbOption = None,
) -> None:
    """Remove a member"""
    market = get_market(db)
    with reported():
        market.remove_member(acting(market, actor), org, user)
    typer.echo(f"✓ Removed {user} from {org}")


# Provider commands


@provider_app.command("register")
def provider_register(
    actor: ActorOption,
    org: Annotated[str, typer.Option("--org", help="Provider organization ID")],
    name: Annotated[str, typer.Option("--name", help="Trading name")],
    specialties: Annotated[
        str, typer.Option("--specialties", help="Comma-separated equipment categories")
    ] = "",
    db: DbOption = None,
) -> None:
    """Register the provider record of a provider organization"""
    market = get_market(db)
    specialty_list = [s.strip() for s in specialties.split(",") if s.strip()]
    with reported():
        provider = market.register_provider(acting(market, actor), org, name, specialty_list)

    typer.echo(f"✓ Registered provider: {provider['provider_id']}")
    typer.echo(f"  Status: {provider['status']} / {provider['verification_status']}")


@provider_app.command("review")
def provider_review(
    actor: ActorOption,
    provider_id: Annotated[str, typer.Option("--id", help="Provider ID")],
    db: DbOption = None,
) -> None:
    """Start verification review (platform admins)"""
    market = get_market(db)
    with reported():
        provider = market.begin_provider_review(acting(market, actor), provider_id)
    typer.echo(f"✓ Review started: {provider_id} ({provider['verification_status']})")


@provider_app.command("approve")
def provider_approve(
    actor: ActorOption,
    provider_id: Annotated[str, typer.Option("--id", help="Provider ID")],
    notes: Annotated[Optional[str], typer.Option("--notes", help="Review notes")] = None,
    db: DbOption = None,
) -> None:
    """Approve a provider (platform admins)"""
    market = get_market(db)
    with reported():
        provider = market.approve_provider(acting(market, actor), provider_id, notes)
    typer.echo(f"✓ Approved provider: {provider_id}")
    typer.echo(f"  Status: {provider['status']} / {provider['verification_status']}")


@provider_app.command("reject")
def provider_reject(
    actor: ActorOption,
    provider_id: Annotated[str, typer.Option("--id", help="Provider ID")],
    reason: Annotated[str, typer.Option("--reason", help="Why verification was refused")],
    db: DbOption = None,
) -> None:
    """Reject a provider's verification (platform admins)"""
    market = get_market(db)
    with reported():
        market.reject_provider(acting(market, actor), provider_id, reason)
    typer.echo(f"✓ Rejected provider: {provider_id}")


@provider_app.command("suspend")
def provider_suspend(
    actor: ActorOption,
    provider_id: Annotated[str, typer.Option("--id", help="Provider ID")],
    reason: Annotated[str, typer.Option("--reason", help="Why the provider is suspended")],
    db: DbOption = None,
) -> None:
    """Suspend an active provider (platform admins)"""
    market = get_market(db)
    with reported():
        market.suspend_provider(acting(market, actor), provider_id, reason)
    typer.echo(f"✓ Suspended provider: {provider_id}")


@provider_app.command("reactivate")
def provider_reactivate(
    actor: ActorOption,
    provider_id: Annotated[str, typer.Option("--id", help="Provider ID")],
    db: DbOption = None,
) -> None:
    """Reactivate a suspended provider (platform admins)"""
    market = get_market(db)
    with reported():
        market.reactivate_provider(acting(market, actor), provider_id)
    typer.echo(f"✓ Reactivated provider: {provider_id}")


@provider_app.command("list")
def provider_list(
    actor: ActorOption,
    status: Annotated[Optional[str], typer.Option("--status", help="Filter by status")] = None,
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """List providers visible to you"""
    market = get_market(db)
    with reported():
        providers = market.list_providers(acting(market, actor), status=status)

    if json_output:
        emit(providers)
        return

    typer.echo(f"Providers ({len(providers)}):")
    for p in providers:
        typer.echo(
            f"  {p['provider_id']}: {p['name']} [{p['status']}/{p['verification_status']}] "
            f"rating {p['average_rating']} ({p['total_ratings']})"
        )


# Service request commands


@request_app.command("create")
def request_create(
    actor: ActorOption,
    org: Annotated[str, typer.Option("--org", help="Hospital organization ID")],
    equipment: Annotated[str, typer.Option("--equipment", help="Equipment ID")],
    request_type: Annotated[
        str,
        typer.Option(
            "--type",
            help="repair, maintenance, calibration, inspection, installation or other",
        ),
    ],
    description_vi: Annotated[str, typer.Option("--description-vi", help="Vietnamese description")],
    description_en: Annotated[
        Optional[str], typer.Option("--description-en", help="English description")
    ] = None,
    priority: Annotated[
        str, typer.Option("--priority", help="low, medium, high or critical")
    ] = "medium",
    scheduled_at: Annotated[
        Optional[datetime], typer.Option("--scheduled-at", help="Preferred service date")
    ] = None,
    db: DbOption = None,
) -> None:
    """File a service request"""
    market = get_market(db)
    with reported():
        request = market.create_service_request(
            acting(market, actor),
            organization_id=org,
            equipment_id=equipment,
            request_type=request_type,
            description_vi=description_vi,
            priority=priority,
            description_en=description_en,
            scheduled_at=scheduled_at,
        )

    typer.echo(f"✓ Created service request: {request['service_request_id']}")
    typer.echo(f"  Type: {request['request_type']} ({request['priority']})")
    typer.echo(f"  Status: {request['status']}")


@request_app.command("show")
def request_show(
    actor: ActorOption,
    request_id: Annotated[str, typer.Option("--id", help="Service request ID")],
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """Show service request details"""
    market = get_market(db)
    with reported():
        request = market.get_service_request(acting(market, actor), request_id)

    if json_output:
        emit(request)
        return

    typer.echo(f"Service request: {request['service_request_id']}")
    typer.echo(f"  Hospital: {request['organization_id']}")
    typer.echo(f"  Equipment: {request['equipment_id']}")
    typer.echo(f"  Type: {request['request_type']} ({request['priority']})")
    typer.echo(f"  Status: {request['status']}")
    typer.echo(f"  Quotes: {len(request['quote_ids'])}")
    if request.get("assigned_provider_id"):
        typer.echo(f"  Assigned provider: {request['assigned_provider_id']}")
    if request["is_bottleneck"]:
        typer.echo("  ⚠ Bottleneck: no progress past the threshold")


@request_app.command("list")
def request_list(
    actor: ActorOption,
    org: Annotated[
        Optional[str], typer.Option("--org", help="Hospital organization ID")
    ] = None,
    provider: Annotated[
        Optional[str], typer.Option("--provider", help="Provider ID (marketplace view)")
    ] = None,
    status: Annotated[Optional[str], typer.Option("--status", help="Filter by status")] = None,
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """
    List service requests

    --org lists a hospital's requests, --provider the requests a provider
    may quote on or is assigned to; neither lists everything (platform admins).
    """
    market = get_market(db)
    with reported():
        identity = acting(market, actor)
        if org:
            requests = market.list_service_requests(identity, org, status)
        elif provider:
            requests = market.list_provider_requests(identity, provider, status)
        else:
            requests = market.list_all_service_requests(identity, status=status)

    if json_output:
        emit(requests)
        return

    typer.echo(f"Service requests ({len(requests)}):")
    for r in requests:
        flag = " ⚠" if r["is_bottleneck"] else ""
        typer.echo(f"  {r['service_request_id']}: {r['request_type']} [{r['status']}]{flag}")


def _transition(db: Optional[Path], actor: str, request_id: str, target: str) -> None:
    market = get_market(db)
    with reported():
        request = market.transition_service_request(acting(market, actor), request_id, target)
    typer.echo(f"✓ Service request {request_id} is now {request['status']}")


@request_app.command("cancel")
def request_cancel(
    actor: ActorOption,
    request_id: Annotated[str, typer.Option("--id", help="Service request ID")],
    db: DbOption = None,
) -> None:
    """Cancel a request (hospital members)"""
    _transition(db, actor, request_id, "cancelled")


@request_app.command("start")
def request_start(
    actor: ActorOption,
    request_id: Annotated[str, typer.Option("--id", help="Service request ID")],
    db: DbOption = None,
) -> None:
    """Start work on an accepted request (assigned provider)"""
    _transition(db, actor, request_id, "in_progress")


@request_app.command("complete")
def request_complete(
    actor: ActorOption,
    request_id: Annotated[str, typer.Option("--id", help="Service request ID")],
    db: DbOption = None,
) -> None:
    """Mark work as completed (assigned provider)"""
    _transition(db, actor, request_id, "completed")


@request_app.command("reassign")
def request_reassign(
    actor: ActorOption,
    request_id: Annotated[str, typer.Option("--id", help="Service request ID")],
    provider: Annotated[str, typer.Option("--provider", help="New provider ID")],
    reason_vi: Annotated[str, typer.Option("--reason-vi", help="Reason (Vietnamese)")],
    reason_en: Annotated[
        Optional[str], typer.Option("--reason-en", help="Reason (English)")
    ] = None,
    db: DbOption = None,
) -> None:
    """Replace the assigned provider (platform admins)"""
    market = get_market(db)
    with reported():
        market.reassign_provider(acting(market, actor), request_id, provider, reason_vi, reason_en)
    typer.echo(f"✓ Reassigned {request_id} to provider {provider}")


@request_app.command("rate")
def request_rate(
    actor: ActorOption,
    request_id: Annotated[str, typer.Option("--id", help="Service request ID")],
    rating: Annotated[int, typer.Option("--rating", help="1 to 5 stars")],
    comment: Annotated[Optional[str], typer.Option("--comment", help="Comment")] = None,
    db: DbOption = None,
) -> None:
    """Rate the provider of a completed request"""
    market = get_market(db)
    with reported():
        provider = market.rate_service(acting(market, actor), request_id, rating, comment)
    typer.echo(f"✓ Rated {provider['name']}: {rating}/5")
    typer.echo(f"  Average: {provider['average_rating']} ({provider['total_ratings']} ratings)")


# Quote commands


@quote_app.command("submit")
def quote_submit(
    actor: ActorOption,
    request_id: Annotated[str, typer.Option("--request", help="Service request ID")],
    provider: Annotated[str, typer.Option("--provider", help="Provider ID")],
    amount: Annotated[str, typer.Option("--amount", help="Quoted price")],
    currency: Annotated[
        Optional[str], typer.Option("--currency", help="Currency (defaults to VND)")
    ] = None,
    notes: Annotated[Optional[str], typer.Option("--notes", help="Notes")] = None,
    duration_days: Annotated[
        Optional[int], typer.Option("--duration-days", help="Estimated duration")
    ] = None,
    start_date: Annotated[
        Optional[str], typer.Option("--start-date", help="Available from (YYYY-MM-DD)")
    ] = None,
    valid_days: Annotated[
        Optional[int], typer.Option("--valid-days", help="Validity in days")
    ] = None,
    db: DbOption = None,
) -> None:
    """Submit a quote on a service request"""
    market = get_market(db)
    with reported():
        quote = market.submit_quote(
            acting(market, actor),
            service_request_id=request_id,
            provider_id=provider,
            amount=amount,
            currency=currency,
            notes=notes,
            estimated_duration_days=duration_days,
            available_start_date=start_date,
            valid_until_days=valid_days,
        )

    typer.echo(f"✓ Submitted quote: {quote['quote_id']}")
    typer.echo(f"  Amount: {quote['amount']} {quote['currency']}")
    typer.echo(f"  Valid until: {quote['valid_until']}")


@quote_app.command("update")
def quote_update(
    actor: ActorOption,
    quote_id: Annotated[str, typer.Option("--id", help="Quote ID")],
    amount: Annotated[Optional[str], typer.Option("--amount", help="New price")] = None,
    notes: Annotated[Optional[str], typer.Option("--notes", help="New notes")] = None,
    valid_days: Annotated[
        Optional[int], typer.Option("--valid-days", help="New validity in days")
    ] = None,
    db: DbOption = None,
) -> None:
    """Edit a pending quote"""
    market = get_market(db)
    changes = {
        k: v
        for k, v in {"amount": amount, "notes": notes, "valid_until_days": valid_days}.items()
        if v is not None
    }
    with reported():
        quote = market.update_quote(acting(market, actor), quote_id, **changes)
    typer.echo(f"✓ Updated quote: {quote_id}")
    typer.echo(f"  Amount: {quote['amount']} {quote['currency']}")


@quote_app.command("accept")
def quote_accept(
    actor: ActorOption,
    quote_id: Annotated[str, typer.Option("--id", help="Quote ID")],
    db: DbOption = None,
) -> None:
    """Accept a quote (rejects the other pending quotes)"""
    market = get_market(db)
    with reported():
        quote = market.accept_quote(acting(market, actor), quote_id)
    typer.echo(f"✓ Accepted quote: {quote_id}")
    typer.echo(f"  Request: {quote['service_request_id']}")
    typer.echo(f"  Provider: {quote['provider_id']}")


@quote_app.command("decline")
def quote_decline(
    actor: ActorOption,
    request_id: Annotated[str, typer.Option("--request", help="Service request ID")],
    provider: Annotated[str, typer.Option("--provider", help="Provider ID")],
    reason: Annotated[str, typer.Option("--reason", help="Why you won't quote")],
    db: DbOption = None,
) -> None:
    """Decline to quote on a request"""
    market = get_market(db)
    with reported():
        market.decline_service_request(acting(market, actor), request_id, provider, reason)
    typer.echo(f"✓ Declined service request: {request_id}")


@quote_app.command("list")
def quote_list(
    actor: ActorOption,
    request_id: Annotated[
        Optional[str], typer.Option("--request", help="Service request ID")
    ] = None,
    provider: Annotated[Optional[str], typer.Option("--provider", help="Provider ID")] = None,
    status: Annotated[Optional[str], typer.Option("--status", help="Filter by status")] = None,
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """List quotes on a request, or a provider's quotes"""
    if not request_id and not provider:
        typer.echo("Error: pass --request or --provider", err=True)
        raise typer.Exit(1)

    market = get_market(db)
    with reported():
        identity = acting(market, actor)
        if request_id:
            quotes = market.list_quotes_for_request(identity, request_id)
        else:
            quotes = market.list_provider_quotes(identity, provider, status)

    if json_output:
        emit(quotes)
        return

    typer.echo(f"Quotes ({len(quotes)}):")
    for q in quotes:
        typer.echo(f"  {q['quote_id']}: {q['amount']} {q['currency']} [{q['status']}]")


@quote_app.command("stats")
def quote_stats(
    actor: ActorOption,
    provider: Annotated[str, typer.Option("--provider", help="Provider ID")],
    db: DbOption = None,
) -> None:
    """Show a provider's quote counters and win rate"""
    market = get_market(db)
    with reported():
        stats = market.quote_stats(acting(market, actor), provider)

    typer.echo(f"Quote stats for {provider}:")
    typer.echo(f"  Pending: {stats.pending_count}")
    typer.echo(f"  Accepted: {stats.accepted_count}")
    typer.echo(f"  Rejected: {stats.rejected_count}")
    typer.echo(f"  Win rate: {'n/a' if stats.win_rate < 0 else f'{stats.win_rate}%'}")


# Dispute commands


@dispute_app.command("open")
def dispute_open(
    actor: ActorOption,
    request_id: Annotated[str, typer.Option("--request", help="Service request ID")],
    description_vi: Annotated[str, typer.Option("--description-vi", help="What went wrong")],
    dispute_type: Annotated[
        str, typer.Option("--type", help="quality, pricing, timeline or other")
    ] = "other",
    description_en: Annotated[
        Optional[str], typer.Option("--description-en", help="English description")
    ] = None,
    db: DbOption = None,
) -> None:
    """Open a dispute on a request"""
    market = get_market(db)
    with reported():
        dispute = market.open_dispute(
            acting(market, actor), request_id, description_vi, dispute_type, description_en
        )
    typer.echo(f"✓ Opened dispute: {dispute['dispute_id']}")
    typer.echo(f"  Type: {dispute['dispute_type']}")


@dispute_app.command("message")
def dispute_message(
    actor: ActorOption,
    dispute_id: Annotated[str, typer.Option("--id", help="Dispute ID")],
    content_vi: Annotated[str, typer.Option("--content-vi", help="Message (Vietnamese)")],
    content_en: Annotated[
        Optional[str], typer.Option("--content-en", help="Message (English)")
    ] = None,
    db: DbOption = None,
) -> None:
    """Add a message to a dispute thread"""
    market = get_market(db)
    with reported():
        dispute = market.add_dispute_message(
            acting(market, actor), dispute_id, content_vi, content_en
        )
    typer.echo(f"✓ Message added ({len(dispute['messages'])} in thread)")


@dispute_app.command("escalate")
def dispute_escalate(
    actor: ActorOption,
    dispute_id: Annotated[str, typer.Option("--id", help="Dispute ID")],
    reason: Annotated[Optional[str], typer.Option("--reason", help="Why")] = None,
    db: DbOption = None,
) -> None:
    """Escalate a dispute to platform admins"""
    market = get_market(db)
    with reported():
        market.escalate_dispute(acting(market, actor), dispute_id, reason)
    typer.echo(f"✓ Escalated dispute: {dispute_id}")


@dispute_app.command("resolve")
def dispute_resolve(
    actor: ActorOption,
    dispute_id: Annotated[str, typer.Option("--id", help="Dispute ID")],
    resolution: Annotated[
        str, typer.Option("--resolution", help="refund, partial_refund, dismiss or re_assign")
    ],
    reason_vi: Annotated[str, typer.Option("--reason-vi", help="Decision (Vietnamese)")],
    reason_en: Annotated[
        Optional[str], typer.Option("--reason-en", help="Decision (English)")
    ] = None,
    refund_amount: Annotated[
        Optional[str], typer.Option("--refund-amount", help="Refund amount")
    ] = None,
    db: DbOption = None,
) -> None:
    """Arbitrate a dispute (platform admins)"""
    market = get_market(db)
    with reported():
        dispute = market.resolve_dispute(
            acting(market, actor), dispute_id, resolution, reason_vi, reason_en, refund_amount
        )
    typer.echo(f"✓ Resolved dispute: {dispute_id}")
    typer.echo(f"  {dispute['resolution_notes']}")


@dispute_app.command("show")
def dispute_show(
    actor: ActorOption,
    dispute_id: Annotated[str, typer.Option("--id", help="Dispute ID")],
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """Show a dispute and its thread"""
    market = get_market(db)
    with reported():
        dispute = market.get_dispute(acting(market, actor), dispute_id)

    if json_output:
        emit(dispute)
        return

    typer.echo(f"Dispute: {dispute['dispute_id']}")
    typer.echo(f"  Request: {dispute['service_request_id']}")
    typer.echo(f"  Type: {dispute['dispute_type']}")
    typer.echo(f"  Status: {dispute['status']}")
    for message in dispute["messages"]:
        typer.echo(f"  [{message['created_at']}] {message['author_id']}: {message['content_vi']}")
    if dispute.get("resolution_notes"):
        typer.echo(f"  Resolution: {dispute['resolution_notes']}")


@dispute_app.command("list")
def dispute_list(
    actor: ActorOption,
    org: Annotated[Optional[str], typer.Option("--org", help="Hospital organization ID")] = None,
    provider: Annotated[Optional[str], typer.Option("--provider", help="Provider ID")] = None,
    escalated: Annotated[
        bool, typer.Option("--escalated", help="Arbitration queue (platform admins)")
    ] = False,
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """List disputes of a hospital, of a provider, or the escalated queue"""
    market = get_market(db)
    with reported():
        identity = acting(market, actor)
        if escalated:
            disputes = market.list_escalated_disputes(identity)
        elif org:
            disputes = market.list_disputes(identity, org)
        elif provider:
            disputes = market.list_provider_disputes(identity, provider)
        else:
            typer.echo("Error: pass --org, --provider or --escalated", err=True)
            raise typer.Exit(1)

    if json_output:
        emit(disputes)
        return

    typer.echo(f"Disputes ({len(disputes)}):")
    for d in disputes:
        typer.echo(f"  {d['dispute_id']}: {d['dispute_type']} [{d['status']}]")


# Audit commands


@audit_app.command("list")
def audit_list(
    actor: ActorOption,
    org: Annotated[Optional[str], typer.Option("--org", help="Organization ID")] = None,
    action: Annotated[Optional[str], typer.Option("--action", help="Filter by action")] = None,
    resource_type: Annotated[
        Optional[str], typer.Option("--resource-type", help="Filter by resource type")
    ] = None,
    limit: Annotated[int, typer.Option("--limit", help="Maximum entries")] = 50,
    all_orgs: Annotated[
        bool, typer.Option("--all", help="Every organization (platform admins)")
    ] = False,
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """List audit entries, newest first"""
    market = get_market(db)
    with reported():
        identity = acting(market, actor)
        if all_orgs:
            entries = market.list_all_audit_entries(
                identity, organization_id=org, action=action, resource_type=resource_type, limit=limit
            )
        elif org:
            entries = market.list_audit_entries(
                identity, org, action=action, resource_type=resource_type, limit=limit
            )
        else:
            typer.echo("Error: pass --org or --all", err=True)
            raise typer.Exit(1)

    if json_output:
        emit(entries)
        return

    typer.echo(f"Audit entries ({len(entries)}):")
    for entry in entries:
        typer.echo(
            f"  {entry['created_at']}: {entry['action']} "
            f"{entry['resource_type']}/{entry['resource_id']} by {entry['actor_id']}"
        )


@audit_app.command("export")
def audit_export(
    actor: ActorOption,
    org: Annotated[Optional[str], typer.Option("--org", help="Organization ID")] = None,
    resource_type: Annotated[
        Optional[str], typer.Option("--resource-type", help="Filter by resource type")
    ] = None,
    search: Annotated[
        Optional[str], typer.Option("--search", help="Match action, resource type or id")
    ] = None,
    output: Annotated[
        Optional[Path], typer.Option("--output", help="Write to file instead of stdout")
    ] = None,
    db: DbOption = None,
) -> None:
    """Export audit entries as CSV (platform admins)"""
    market = get_market(db)
    with reported():
        text = market.export_audit_csv(
            acting(market, actor), organization_id=org, resource_type=resource_type, search=search
        )

    if output is None:
        typer.echo(text, nl=False)
        return

    output.write_text(text, encoding="utf-8")
    typer.echo(f"✓ Exported audit log to {output}")


# Analytics commands


@analytics_app.command("overview")
def analytics_overview(actor: ActorOption, db: DbOption = None) -> None:
    """Platform totals"""
    market = get_market(db)
    with reported():
        emit(market.analytics_overview(acting(market, actor)))


@analytics_app.command("growth")
def analytics_growth(
    actor: ActorOption,
    months: Annotated[Optional[int], typer.Option("--months", help="Window length")] = None,
    db: DbOption = None,
) -> None:
    """New hospitals and providers per month"""
    market = get_market(db)
    with reported():
        emit(market.analytics_growth(acting(market, actor), months))


@analytics_app.command("services")
def analytics_services(
    actor: ActorOption,
    months: Annotated[Optional[int], typer.Option("--months", help="Window length")] = None,
    db: DbOption = None,
) -> None:
    """Request volume and completion rate per month"""
    market = get_market(db)
    with reported():
        emit(market.analytics_service_metrics(acting(market, actor), months))


@analytics_app.command("revenue")
def analytics_revenue(
    actor: ActorOption,
    top: Annotated[Optional[int], typer.Option("--top", help="Rows per ranking")] = None,
    db: DbOption = None,
) -> None:
    """Revenue totals and rankings"""
    market = get_market(db)
    with reported():
        emit(market.analytics_revenue(acting(market, actor), top))


@analytics_app.command("performers")
def analytics_performers(
    actor: ActorOption,
    top: Annotated[Optional[int], typer.Option("--top", help="Rows per ranking")] = None,
    db: DbOption = None,
) -> None:
    """Busiest hospitals and best-rated providers"""
    market = get_market(db)
    with reported():
        emit(market.analytics_top_performers(acting(market, actor), top))


@analytics_app.command("provider")
def analytics_provider(
    actor: ActorOption,
    provider_id: Annotated[str, typer.Option("--id", help="Provider ID")],
    db: DbOption = None,
) -> None:
    """One provider's assignments, completion rate, ratings and disputes"""
    market = get_market(db)
    with reported():
        emit(market.analytics_provider_scorecard(acting(market, actor), provider_id))


@analytics_app.command("health")
def analytics_health(actor: ActorOption, db: DbOption = None) -> None:
    """Quote responsiveness, dispute turnaround and bottlenecks"""
    market = get_market(db)
    with reported():
        emit(market.analytics_platform_health(acting(market, actor)))


# Monitoring commands


@app.command()
def tick(db: DbOption = None) -> None:
    """Expire stale quotes and refresh the bottleneck gauge"""
    market = get_market(db)

    result = market.tick()

    typer.echo("✓ Tick completed")
    typer.echo(f"  Expired quotes: {result['expired_quotes']}")
    typer.echo(f"  Bottlenecked requests: {result['bottlenecks']}")


@app.command()
def health(db: DbOption = None, json_output: JsonOption = False) -> None:
    """Show storage and workflow counters"""
    market = get_market(db)

    status = market.health()

    if json_output:
        emit(status)
        return

    typer.echo("Marketplace health:")
    typer.echo(f"  Events: {status['events']} in {status['streams']} streams")
    typer.echo(f"  Audit entries: {status['audit_entries']}")
    typer.echo(f"  Bottlenecked requests: {status['open_bottlenecks']}")
    typer.echo(f"  Escalated disputes: {status['escalated_disputes']}")


def main() -> None:
    """Main entry point"""
    app()


if __name__ == "__main__":
    main()
