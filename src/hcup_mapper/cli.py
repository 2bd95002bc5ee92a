# src/hcup_mapper/cli.py
import logging
from pathlib import Path

import click
import pandas as pd

from hcup_mapper.changelog import download_changelog, read_changelog, resolve_changelog_url
from hcup_mapper.config import ResolverSettings, create_default_config, load_config
from hcup_mapper.descriptions import get_category_descriptions
from hcup_mapper.downloader import download_mapping
from hcup_mapper.exceptions import ChangeLogNotFound, HCUPMapperError
from hcup_mapper.mapper import OUTPUT_FORMATS, map_codes
from hcup_mapper.readers import read_mapping_file
from hcup_mapper.resolver import build_resolver
from hcup_mapper.trend_tables import list_trend_tables

logger = logging.getLogger(__name__)

FAMILY_CHOICES = ["diagnosis", "dx", "procedure", "pr"]


def _read_records(path: Path) -> pd.DataFrame:
    if path.suffix.lower() in (".xlsx", ".xls"):
        return pd.read_excel(path, dtype=str)
    return pd.read_csv(path, dtype=str, keep_default_na=False, na_values=[""])


def _write_frame(df: pd.DataFrame, output):
    if output is None:
        click.echo(df.to_csv(index=False), nl=False)
        return
    output = Path(output)
    output.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output, index=False)
    click.echo(f"Wrote {len(df):,} rows to {output}")


@click.group()
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False), default=None,
              help="YAML configuration file")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option("--progress/--no-progress", default=False, help="Show probe progress bar")
@click.pass_context
def cli(ctx, config_path, verbose, progress):
    """HCUP CCSR version resolution and code mapping"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    ctx.ensure_object(dict)
    if config_path is not None:
        settings = ResolverSettings.from_config(load_config(config_path))
    else:
        settings = ResolverSettings()
    ctx.obj["settings"] = settings
    ctx.obj["progress"] = progress


def _resolver(ctx):
    if "resolver" not in ctx.obj:
        ctx.obj["resolver"] = build_resolver(ctx.obj["settings"], ctx.obj["progress"])
    return ctx.obj["resolver"]


def _fail(error: Exception):
    raise click.ClickException(str(error)) from error


@cli.command()
@click.option("--type", "family", type=click.Choice(FAMILY_CHOICES), default="diagnosis")
@click.option("--refresh", is_flag=True, help="Ignore the cached result")
@click.pass_context
def latest(ctx, family, refresh):
    """Print the latest CCSR release for a family"""
    try:
        tag = _resolver(ctx).resolve(family, force_refresh=refresh)
    except HCUPMapperError as e:
        _fail(e)
    click.echo(tag.canonical)


@cli.command()
@click.option("--type", "family", type=click.Choice(FAMILY_CHOICES + ["all"]), default="all")
@click.option("--refresh", is_flag=True, help="Ignore the cached listing")
@click.pass_context
def versions(ctx, family, refresh):
    """List CCSR releases advertised on the HCUP website"""
    try:
        df = _resolver(ctx).list_versions(family, force_refresh=refresh)
    except HCUPMapperError as e:
        _fail(e)
    for row in df.itertuples(index=False):
        click.echo(f"{row.type}\t{row.version}")


@cli.command(name="map")
@click.argument("records_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--code-column", required=True, help="Column holding ICD-10 codes")
@click.option("--mapping", "mapping_path", type=click.Path(exists=True), default=None,
              help="Local mapping ZIP/CSV/Excel/directory; downloaded when omitted")
@click.option("--type", "family", type=click.Choice(FAMILY_CHOICES), default="diagnosis")
@click.option("--version", "version", default="latest", help="'latest' or vYYYY.N")
@click.option("--format", "output_format", type=click.Choice(list(OUTPUT_FORMATS)), default="long")
@click.option("--default-only", is_flag=True, help="Keep only the default category")
@click.option("--codes-only", is_flag=True, help="Drop input columns other than the code")
@click.option("-o", "--output", type=click.Path(dir_okay=False), default=None,
              help="Output CSV; stdout when omitted")
@click.pass_context
def map_command(ctx, records_file, code_column, mapping_path, family, version,
                output_format, default_only, codes_only, output):
    """Map the codes in RECORDS_FILE to CCSR categories"""
    records = _read_records(Path(records_file))
    try:
        if mapping_path is not None:
            mapping = read_mapping_file(mapping_path, family=family)
        else:
            mapping = download_mapping(family, version, resolver=_resolver(ctx))
        result = map_codes(
            records,
            code_column,
            mapping,
            family=family,
            output_format=output_format,
            default_only=default_only,
            keep_all_columns=not codes_only,
        )
    except (HCUPMapperError, FileNotFoundError) as e:
        _fail(e)
    _write_frame(result, output)


@cli.command()
@click.argument("codes", nargs=-1, required=True)
@click.option("--mapping", "mapping_path", type=click.Path(exists=True), default=None,
              help="Local mapping file; downloaded when omitted")
@click.option("--type", "family", type=click.Choice(FAMILY_CHOICES), default=None)
@click.pass_context
def descriptions(ctx, codes, mapping_path, family):
    """Print descriptions for CCSR category CODES"""
    if family is None:
        family = "procedure" if any(c.upper().startswith("PRC") for c in codes) else "diagnosis"
    try:
        if mapping_path is not None:
            mapping = read_mapping_file(mapping_path, family=family)
        else:
            mapping = download_mapping(family, resolver=_resolver(ctx))
        df = get_category_descriptions(list(codes), mapping)
    except (HCUPMapperError, ValueError, FileNotFoundError) as e:
        _fail(e)
    for row in df.itertuples(index=False):
        description = "" if pd.isna(row.description) else row.description
        click.echo(f"{row.category_code}\t{description}")


@cli.command()
@click.option("--type", "family", type=click.Choice(FAMILY_CHOICES), default="diagnosis")
@click.option("--version", "version", default="latest", help="'latest' or vYYYY.N")
@click.option("--format", "output_format", type=click.Choice(["read", "download", "url"]),
              default="read", help="Print the table, the downloaded path, or the URL")
@click.option("--dest", "dest_dir", type=click.Path(file_okay=False), default=None,
              help="Download directory (cache directory when omitted)")
@click.option("-o", "--output", type=click.Path(dir_okay=False), default=None,
              help="CSV file for the table (stdout when omitted)")
@click.pass_context
def changelog(ctx, family, version, output_format, dest_dir, output):
    """Locate, download or read the change log of a CCSR release"""
    resolver = _resolver(ctx)
    try:
        tag = resolver.resolve(family, version)
        if output_format == "url":
            url = resolve_changelog_url(resolver.probe, family, tag,
                                        base_url=resolver.settings.base_url)
            if url is None:
                raise ChangeLogNotFound(f"Could not locate a change log for {family} {tag}")
            click.echo(url)
            return
        path = download_changelog(resolver.probe, family, tag, dest_dir=dest_dir,
                                  settings=resolver.settings)
        if output_format == "download":
            click.echo(str(path))
            return
        df = read_changelog(path)
    except (HCUPMapperError, FileNotFoundError, ValueError) as e:
        _fail(e)
    _write_frame(df, output)


@cli.command(name="trend-tables")
@click.option("--refresh", is_flag=True, help="Ignore the cached listing")
@click.pass_context
def trend_tables(ctx, refresh):
    """List HCUP Summary Trend Tables"""
    resolver = _resolver(ctx)
    tables = list_trend_tables(
        resolver.probe,
        cache=resolver.cache,
        settings=ctx.obj["settings"],
        force_refresh=refresh,
    )
    if tables.empty:
        click.echo("No trend tables found")
        return
    for row in tables.itertuples(index=False):
        click.echo(f"{row.table_id}\t{row.table_name}")


@cli.command(name="init-config")
@click.argument("path", type=click.Path(dir_okay=False), default="hcup_mapper.yaml")
def init_config(path):
    """Write a default configuration file to PATH"""
    if create_default_config(path):
        click.echo(f"Created {path}")
    else:
        click.echo(f"{path} already exists")


if __name__ == "__main__":
    cli()
