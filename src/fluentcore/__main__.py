"""Main entry point: one maintenance pass over the learning data."""
import asyncio
import logging

from fluentcore.app import FluentEngine
from fluentcore.config import WORD_PROGRESS, ensure_directories, settings
from fluentcore.logging_config import setup_logging
from fluentcore.monitoring import start_monitoring

logger = logging.getLogger(__name__)


async def main() -> None:
    """Clean up stale data and report learning stats per language."""
    engine = FluentEngine.from_url()
    await engine.start()
    try:
        report = await engine.progress.cleanup()
        logger.info(
            "Removed %d stale words and %d expired translations",
            report.words_removed,
            report.translations_removed,
        )

        progress = await engine.store.get(WORD_PROGRESS, {})
        languages = sorted({key.partition(":")[0] for key in progress})
        for language in languages:
            stats = await engine.progress.get_learning_stats(language)
            logger.info(
                "%s: %d words, %d mastered, %d due, average mastery %.1f",
                language,
                stats.total_words,
                stats.mastered_words,
                stats.words_due_for_review,
                stats.average_mastery,
            )

        usage = await engine.quota.get_usage_stats()
        logger.info(
            "Today: %d/%s translations, %d/%s explanations",
            usage.words_today,
            usage.words_limit,
            usage.explanations_today,
            usage.explanations_limit,
        )
    finally:
        logger.info("Cleaning up...")
        await engine.stop()


if __name__ == "__main__":
    # Ensure all required directories exist
    ensure_directories()

    setup_logging("Starting fluentcore maintenance ...")

    if settings.monitoring.port:
        start_monitoring(settings.monitoring.port)

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down...")
