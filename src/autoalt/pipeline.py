"""
Vehicle photo alt-text pipeline.

Pipeline:
  1. Extract image entries from the uploaded ZIP
  2. Deduplicate resized/re-encoded variants (filename pass, then content hash)
  3. Classify each unique image (pixel heuristics or a remote/local model backend)
  4. Compose alt text bound to the vehicle metadata and write the reports
"""

import sys
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Optional, Sequence

from tqdm.auto import tqdm

from autoalt.archive import ArchiveSource, CorruptArchiveError, extract_assets
from autoalt.backends import PixelBackend, setup_backend
from autoalt.compose import FAILED_ALT_TEXT, compose_alt_text, subject_phrase
from autoalt.config import (
    resolve_concurrency,
    resolve_dedup_threshold,
    resolve_interior_gate,
)
from autoalt.dedup import RepresentativePolicy, deduplicate
from autoalt.models import DuplicateGroup, ImageRecord, ProcessingState, VehicleSubject
from autoalt.report import report_rows, write_json_report, write_markdown_report
from autoalt.store import ResultsStore


def _unique_image_id(entry_path: str, taken: set[str]) -> str:
    image_id = entry_path
    suffix = 2
    while image_id in taken:
        image_id = f"{entry_path}#{suffix}"
        suffix += 1
    taken.add(image_id)
    return image_id


def register_groups(groups: Sequence[DuplicateGroup], store: ResultsStore) -> list[str]:
    """
    Add one queued record per settled duplicate group; returns the ids.

    Fingerprinting happens inside deduplicate, so records enter ``hashing`` with
    their member list once their group is final.
    """
    taken: set[str] = set()
    image_ids = []
    for group in groups:
        image_id = _unique_image_id(group.representative.entry_path, taken)
        store.add(ImageRecord(image_id=image_id, filename=group.representative.name))
        store.transition(image_id, ProcessingState.HASHING, members=group.member_paths)
        image_ids.append(image_id)
    return image_ids


def classify_groups(
    groups: Sequence[DuplicateGroup],
    subject: VehicleSubject,
    backend=None,
    concurrency: int = 1,
    store: Optional[ResultsStore] = None,
    show_progress: bool = False,
) -> list[ImageRecord]:
    """
    Classify every group representative and compose its alt text.

    Per-image failures become ``error`` records carrying FAILED_ALT_TEXT; the
    rest of the batch keeps going. Records come back in group order.
    """
    if backend is None:
        backend = PixelBackend()
    if store is None:
        store = ResultsStore()
    image_ids = register_groups(groups, store)
    if not groups:
        return store.records()

    def classify_one(image_id: str, group: DuplicateGroup) -> None:
        store.transition(image_id, ProcessingState.CLASSIFYING)
        representative = group.representative
        result = backend.classify(representative.data, filename=representative.entry_path, subject=subject)
        store.transition(
            image_id,
            ProcessingState.DONE,
            descriptor=result.descriptor,
            environment=result.environment,
            alt_text=compose_alt_text(subject, result),
        )

    progress_bar = None
    progress_write = print
    if show_progress:
        progress_bar = tqdm(total=len(groups), desc="  Classifying", unit="img")
        progress_write = tqdm.write

    with ThreadPoolExecutor(max_workers=max(1, concurrency)) as executor:
        pending = {
            executor.submit(classify_one, image_id, group): (image_id, group)
            for image_id, group in zip(image_ids, groups)
        }
        for future in as_completed(pending):
            image_id, group = pending[future]
            try:
                future.result()
            except Exception as e:
                progress_write(f"  ⚠ Classification failed for {group.representative.name}: {e}")
                store.transition(
                    image_id, ProcessingState.ERROR, alt_text=FAILED_ALT_TEXT, error=str(e)
                )
            if progress_bar is not None:
                progress_bar.update(1)

    if progress_bar is not None:
        progress_bar.close()
    return store.records()


def process_archive(
    source: ArchiveSource,
    subject: VehicleSubject,
    backend=None,
    threshold: Optional[int] = None,
    policy: RepresentativePolicy = RepresentativePolicy.SMALLEST_BYTES,
    verify_names: bool = False,
    concurrency: Optional[int] = None,
    store: Optional[ResultsStore] = None,
) -> list[ImageRecord]:
    """
    Extract, deduplicate, classify and compose for one archive.

    CorruptArchiveError propagates before any record is produced.
    """
    threshold = resolve_dedup_threshold() if threshold is None else threshold
    concurrency = resolve_concurrency() if concurrency is None else concurrency
    assets = extract_assets(source)
    groups = deduplicate(
        assets, threshold=threshold, policy=policy, verify_names=verify_names, max_workers=concurrency
    )
    return classify_groups(groups, subject, backend=backend, concurrency=concurrency, store=store)


def _write_outputs(groups: Sequence[DuplicateGroup], records: list[ImageRecord], images_dir: Path) -> dict[str, str]:
    images_dir.mkdir(parents=True, exist_ok=True)
    outputs: dict[str, str] = {}
    for rank, (group, record) in enumerate(zip(groups, records), start=1):
        dest = images_dir / f"{rank:02d}_{group.representative.name}"
        try:
            dest.write_bytes(group.representative.data)
        except OSError as e:
            print(f"  ⚠ Could not write {dest.name}: {e}")
            continue
        outputs[record.image_id] = f"{images_dir.name}/{dest.name}"
    return outputs


def run_pipeline(
    archive: str,
    year: str,
    model: str,
    make: str = "",
    trim: str = "",
    color: str = "",
    output_folder: str = "alt_text_output",
    backend: str = "pixel",
    threshold: Optional[int] = None,
    policy: str = "smallest",
    verify_names: bool = False,
    claude_model: Optional[str] = None,
):
    """
    Full pipeline: extract → deduplicate → classify → compose → report.

    Args:
        archive: Path to the ZIP of vehicle photos
        year, model, make, trim, color: Vehicle metadata bound into every alt text
        output_folder: Folder for representative images and the reports
        backend: "pixel" (local heuristics), "blip", "claude", "ollama" or "clip"
        threshold: Hamming distance (of 64 bits) at or below which images are duplicates
        policy: Which duplicate survives: "smallest" (bytes) or "largest" (pixel area)
        verify_names: Re-split filename groups whose content hashes disagree
    """
    src = Path(archive)
    out = Path(output_folder)
    subject = VehicleSubject(year=year, model=model, make=make, trim=trim, color=color)
    threshold = resolve_dedup_threshold() if threshold is None else threshold
    concurrency = resolve_concurrency()
    representative_policy = RepresentativePolicy(policy)

    if not src.exists():
        print(f"❌ Archive not found: {src}")
        sys.exit(1)

    print("=" * 60)
    print("🚗 Vehicle Alt Text Pipeline")
    print(f"   Archive: {src}")
    print(f"   Output:  {out}")
    print(f"   Vehicle: {subject_phrase(subject)}")
    print(f"   Backend: {backend}")
    print("=" * 60)

    # --- Stage 1: Extract ---
    print("\n📦 Stage 1: Extracting images...")
    try:
        assets = extract_assets(src)
    except CorruptArchiveError as e:
        print(f"❌ {e}")
        sys.exit(1)
    if not assets:
        print("❌ No supported images found in archive.")
        sys.exit(1)
    print(f"  Found {len(assets)} images")

    # --- Stage 2: Deduplicate ---
    print(f"\n🔍 Stage 2: Deduplicating (threshold={threshold}, keep={representative_policy.value})...")
    groups = deduplicate(
        assets,
        threshold=threshold,
        policy=representative_policy,
        verify_names=verify_names,
        max_workers=concurrency,
    )
    print(f"  {len(assets)} → {len(groups)} unique ({len(assets) - len(groups)} duplicates removed)")

    # --- Stage 3: Classify ---
    print(f"\n🧠 Stage 3: Classifying {len(groups)} images ({backend})...")
    classifier = setup_backend(
        backend,
        env_search_dir=src.parent,
        claude_model=claude_model,
        interior_gate=resolve_interior_gate(),
    )
    records = classify_groups(
        groups, subject, backend=classifier, concurrency=concurrency, show_progress=True
    )
    failed = sum(1 for record in records if record.state == ProcessingState.ERROR)
    print(f"  ✅ Classification: {len(records) - failed} labeled, {failed} failed")

    # --- Stage 4: Output ---
    print("\n📝 Stage 4: Writing alt text and reports...")
    out.mkdir(parents=True, exist_ok=True)
    outputs = _write_outputs(groups, records, out / "images")
    rows = report_rows(records, outputs)
    for row in rows:
        print(f"  #{row['rank']}: {row['filename']} → {row['alt_text']}")

    report_json_path = out / "alt_text_report.json"
    write_json_report(report_json_path, rows)
    report_md_path = out / "alt_text_report.md"
    write_markdown_report(
        report_md_path,
        archive=src,
        output_folder=out,
        backend=getattr(classifier, "name", backend),
        subject=subject,
        total_images=len(assets),
        rows=rows,
    )

    print(f"\n{'=' * 60}")
    print(f"🏆 Done! {len(rows)} alt texts written to {out}/")
    print(f"📋 JSON Report: {report_json_path}")
    print(f"📝 Markdown Report: {report_md_path}")
    print(f"{'=' * 60}")

    return rows
