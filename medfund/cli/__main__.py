import asyncio
import base64
import json
import mimetypes
import sys
import uuid
from pathlib import Path
from typing import Optional, Tuple

import typer

from medfund.campaigns.schemas import Campaign, CampaignUpload, ImageUpload, Reward, Testimonial
from medfund.campaigns.services import CampaignDatabaseManager
from medfund.core.constants import POINTER_FILE_PATH
from medfund.core.enums.campaign import CampaignStatus, RewardType, TestimonialStatus
from medfund.core.exceptions import Conflict, MedfundError, StoreUnavailable
from medfund.storage.pinata import new_pinata_client
from medfund.storage.pointer import PointerFile

app = typer.Typer(help="Manage the MedFund campaign database on IPFS.")

# Accepted in place of a database CID: resolve it through the pointer file
LATEST = "latest"


def _fail(message: str):
    typer.secho(message, err=True, fg=typer.colors.RED)
    sys.exit(1)


def _run(action, require_store: bool = True):
    """
    Run ``action(manager)`` against a fresh Pinata client.

    Store, validation and I/O errors are printed and end the process with status 1.
    """

    async def _main():
        async with new_pinata_client() as pinata:
            manager = CampaignDatabaseManager(pinata)
            if require_store and not manager.configured:
                raise StoreUnavailable(
                    "Pinata JWT token is not configured. "
                    "Set PINATA_JWT in your environment or .env file (Pinata account, API Keys page)."
                )
            return await action(manager)

    try:
        return asyncio.run(_main())
    except (MedfundError, ValueError, OSError) as e:
        _fail(f"Error: {e}")


def _pointer_cid(pointer: PointerFile) -> Optional[str]:
    try:
        return pointer.current_cid()
    except (MedfundError, OSError) as e:
        _fail(f"Error: could not read {pointer.path}: {e}")


def _resolve_cid(database_cid: str, pointer: PointerFile) -> str:
    if database_cid != LATEST:
        return database_cid
    cid = _pointer_cid(pointer)
    if cid is None:
        _fail(f"Error: no database CID recorded in {pointer.path}")
    return cid


def _record_pointer(pointer: PointerFile, expected_cid: Optional[str], new_cid: str, enabled: bool):
    if not enabled:
        return
    try:
        pointer.compare_and_swap(expected_cid, new_cid)
    except Conflict as e:
        _fail(
            f"Error: {e}. The database was saved as {new_cid} but the pointer was left alone; "
            "load the latest database and apply the change again."
        )
    except (MedfundError, OSError) as e:
        _fail(f"Error: could not update {pointer.path}: {e}. The database was saved as {new_cid}.")
    typer.secho(f"Pointer {pointer.path} now names {new_cid}", fg=typer.colors.BLUE)


def _encode_image(path: Path) -> Tuple[str, str]:
    if not path.is_file():
        raise FileNotFoundError(f"File not found: {path}")
    mime_type = mimetypes.guess_type(path.name)[0] or "image/png"
    return base64.b64encode(path.read_bytes()).decode("ascii"), mime_type


def _print_new_database(cid: str):
    typer.secho(f"NEW Database CID: {cid}", fg=typer.colors.GREEN)
    typer.echo("Use this CID (or --update-pointer and 'latest') for subsequent operations.")


UpdatePointer = typer.Option(
    False,
    "--update-pointer",
    help="Record the new database CID in the pointer file (compare-and-swap against the loaded CID).",
)


@app.callback()
def main(
    ctx: typer.Context,
    pointer_file: Path = typer.Option(
        Path(POINTER_FILE_PATH), "--pointer-file", help="Pointer file holding the latest database CID"
    ),
):
    ctx.obj = PointerFile(pointer_file)


@app.command()
def init(ctx: typer.Context, update_pointer: bool = UpdatePointer):
    """
    Create a new empty campaign database on IPFS and print its CID.
    """
    cid = _run(lambda manager: manager.create_empty_database())
    typer.secho("New empty database created!", fg=typer.colors.GREEN)
    typer.echo(f"Database CID: {cid}")
    if update_pointer:
        try:
            ctx.obj.write(cid)
        except (MedfundError, OSError) as e:
            _fail(f"Error: could not write {ctx.obj.path}: {e}")
        typer.secho(f"Pointer {ctx.obj.path} now names {cid}", fg=typer.colors.BLUE)


@app.command("add-campaign")
def add_campaign(
    ctx: typer.Context,
    database_cid: str = typer.Argument(..., help="Database CID, or 'latest'"),
    title: str = typer.Option(..., "--title", "-t", help="Campaign title"),
    story: str = typer.Option(..., "--story", "-s", help="Campaign story/description"),
    goal: float = typer.Option(..., "--goal", "-g", help="Goal amount (in lovelace for ADA)"),
    currency: str = typer.Option("ADA", "--currency", "-c"),
    category: str = typer.Option("Medical", "--category"),
    status: CampaignStatus = typer.Option(CampaignStatus.DRAFT, "--status"),
    organizer_id: Optional[str] = typer.Option(None, "--organizer-id", help="Organizer wallet address or ID"),
    end_date: Optional[int] = typer.Option(None, "--end-date", help="End date, Unix epoch milliseconds"),
    beneficiary_name: Optional[str] = typer.Option(None, "--beneficiary-name"),
    image: Optional[Path] = typer.Option(None, "--image", help="Main campaign image"),
    update_pointer: bool = UpdatePointer,
):
    """
    Add a new campaign to the database and save a new database snapshot.
    """
    source_cid = _resolve_cid(database_cid, ctx.obj)
    campaign_id = str(uuid.uuid4())

    async def action(manager: CampaignDatabaseManager):
        campaign = Campaign(
            id=campaign_id,
            title=title,
            story=story,
            goalAmount=goal,
            currency=currency,
            category=category,
            status=status,
            organizerId=organizer_id,
            endDate=end_date,
            beneficiaryName=beneficiary_name,
        )
        images = []
        if image is not None:
            encoded, mime_type = _encode_image(image)
            images.append(ImageUpload(key="campaignImage", base64=encoded, mimeType=mime_type))
        await manager.load_database(source_cid)
        campaign_cid = await manager.upload_campaign(CampaignUpload(campaign=campaign, images=images))
        return campaign_cid, manager.database_cid

    campaign_cid, new_cid = _run(action)
    typer.secho(f"Campaign added with ID: {campaign_id}", fg=typer.colors.GREEN)
    typer.echo(f"Campaign metadata CID: {campaign_cid}")
    _print_new_database(new_cid)
    _record_pointer(ctx.obj, source_cid, new_cid, update_pointer)


@app.command("update-funding")
def update_funding(
    ctx: typer.Context,
    database_cid: str = typer.Argument(..., help="Database CID, or 'latest'"),
    campaign_id: str = typer.Argument(...),
    raised: float = typer.Option(..., "--raised", "-r", help="New total raised amount"),
    donators: int = typer.Option(..., "--donators", help="New total unique donator count"),
    donations: int = typer.Option(..., "--donations", help="New total donation transaction count"),
    update_pointer: bool = UpdatePointer,
):
    """
    Update the funding counters of a campaign.
    """
    source_cid = _resolve_cid(database_cid, ctx.obj)

    async def action(manager: CampaignDatabaseManager):
        await manager.load_database(source_cid)
        return await manager.update_campaign_funding(campaign_id, raised, donators, donations)

    new_cid = _run(action)
    typer.secho(f"Funding updated for campaign {campaign_id}.", fg=typer.colors.GREEN)
    _print_new_database(new_cid)
    _record_pointer(ctx.obj, source_cid, new_cid, update_pointer)


@app.command("get-campaign")
def get_campaign(
    ctx: typer.Context,
    database_cid: str = typer.Argument(..., help="Database CID, or 'latest'"),
    campaign_id: str = typer.Argument(...),
):
    """
    Print one campaign from the database as JSON.
    """
    source_cid = _resolve_cid(database_cid, ctx.obj)

    async def action(manager: CampaignDatabaseManager):
        await manager.load_database(source_cid)
        return manager.get_campaign(campaign_id)

    campaign = _run(action, require_store=False)
    typer.echo(json.dumps(campaign.model_dump(mode="json", exclude_none=True), indent=2))


@app.command("list-campaigns")
def list_campaigns(
    ctx: typer.Context,
    database_cid: str = typer.Argument(..., help="Database CID, or 'latest'"),
    status: Optional[CampaignStatus] = typer.Option(None, "--status", help="Only campaigns in this status"),
):
    """
    List all campaigns in the database.
    """
    source_cid = _resolve_cid(database_cid, ctx.obj)

    async def action(manager: CampaignDatabaseManager):
        await manager.load_database(source_cid)
        return manager.list_campaigns(status)

    campaigns = _run(action, require_store=False)
    if not campaigns:
        typer.echo("No campaigns found in this database.")
        return
    for campaign in campaigns:
        typer.echo(json.dumps(campaign.model_dump(mode="json", exclude_none=True), indent=2))
        typer.echo("---")


@app.command("add-testimonial")
def add_testimonial(
    ctx: typer.Context,
    database_cid: str = typer.Argument(..., help="Database CID, or 'latest'"),
    author: str = typer.Option(..., "--author", help="Author name"),
    text: str = typer.Option(..., "--text", help="Testimonial text"),
    rating: Optional[int] = typer.Option(None, "--rating", help="Rating from 1 to 5"),
    campaign_id: Optional[str] = typer.Option(None, "--campaign-id"),
    location: Optional[str] = typer.Option(None, "--location"),
    status: TestimonialStatus = typer.Option(TestimonialStatus.PENDING, "--status"),
    author_image: Optional[Path] = typer.Option(None, "--author-image"),
    update_pointer: bool = UpdatePointer,
):
    """
    Add or replace a testimonial (keyed by author and campaign).
    """
    source_cid = _resolve_cid(database_cid, ctx.obj)

    async def action(manager: CampaignDatabaseManager):
        testimonial = Testimonial(
            authorName=author,
            testimonialText=text,
            rating=rating,
            campaignId=campaign_id,
            location=location,
            status=status,
        )
        encoded = _encode_image(author_image)[0] if author_image is not None else None
        await manager.load_database(source_cid)
        testimonial_cid = await manager.upload_testimonial(testimonial, encoded)
        return testimonial_cid, manager.database_cid

    testimonial_cid, new_cid = _run(action)
    typer.secho(f"Testimonial from {author} stored: {testimonial_cid}", fg=typer.colors.GREEN)
    _print_new_database(new_cid)
    _record_pointer(ctx.obj, source_cid, new_cid, update_pointer)


@app.command("add-reward")
def add_reward(
    ctx: typer.Context,
    database_cid: str = typer.Argument(..., help="Database CID, or 'latest'"),
    title: str = typer.Option(..., "--title", "-t"),
    description: str = typer.Option(..., "--description", "-d"),
    threshold: float = typer.Option(..., "--threshold", help="Donation needed to earn the reward"),
    supply: int = typer.Option(..., "--supply", help="Total number of rewards available"),
    reward_type: RewardType = typer.Option(RewardType.DIGITAL, "--type"),
    campaign_id: Optional[str] = typer.Option(None, "--campaign-id"),
    image: Optional[Path] = typer.Option(None, "--image"),
    update_pointer: bool = UpdatePointer,
):
    """
    Add or replace a reward (keyed by title and campaign).
    """
    source_cid = _resolve_cid(database_cid, ctx.obj)

    async def action(manager: CampaignDatabaseManager):
        reward = Reward(
            title=title,
            description=description,
            threshold=threshold,
            totalSupply=supply,
            type=reward_type,
            campaignId=campaign_id,
        )
        encoded = _encode_image(image)[0] if image is not None else None
        await manager.load_database(source_cid)
        reward_cid = await manager.upload_reward(reward, encoded)
        return reward_cid, manager.database_cid

    reward_cid, new_cid = _run(action)
    typer.secho(f"Reward '{title}' stored: {reward_cid}", fg=typer.colors.GREEN)
    _print_new_database(new_cid)
    _record_pointer(ctx.obj, source_cid, new_cid, update_pointer)


@app.command()
def unpin(
    ctx: typer.Context,
    cid: str = typer.Argument(..., help="CID of a superseded database snapshot or entity blob"),
):
    """
    Unpin content from Pinata. The database named by the pointer file is refused.
    """
    if cid == _pointer_cid(ctx.obj):
        _fail(f"Error: {cid} is the current database in {ctx.obj.path}; refusing to unpin it.")

    _run(lambda manager: manager.pinata.unpin(cid))
    typer.secho(f"Unpinned {cid}", fg=typer.colors.GREEN)


if __name__ == "__main__":
    app()
