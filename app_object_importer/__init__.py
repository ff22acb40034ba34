"""
App Object Importer - copy objects between BI application documents.

Reads the importable objects of a source document (script sections,
sheets, dimensions, measures, master visualizations, alternate states,
variables and, for inspection, bookmarks), compares them with the current
document and imports or updates them one at a time.

Usage:
    import asyncio
    from app_object_importer import ImporterContext, ImportSession, MemoryEngine

    engine = MemoryEngine.from_directory('apps', current_app_id='sales')
    ctx = ImporterContext.create(engine)

    async def run():
        session = await ImportSession(ctx, 'marketing').load()
        for item in session.get_items('measure'):
            print(item.label, item.status.importable, item.status.updatable)
        await session.import_all('measure')
        engine.save_document('sales')

    asyncio.run(run())
"""

__version__ = '0.1.0'


def __getattr__(name):
    """Lazy import so the package can be imported without optional extras."""
    if name in ('ImporterContext',):
        from .context import ImporterContext
        return ImporterContext
    if name in ('ImportSession', 'ImporterStateMachine', 'run_batch'):
        from . import orchestrator
        return getattr(orchestrator, name)
    if name == 'MemoryEngine':
        from .memory_engine import MemoryEngine
        return MemoryEngine
    if name == 'ImporterSettings':
        from .config import ImporterSettings
        return ImporterSettings
    if name in ('Item', 'ItemType'):
        from . import models
        return getattr(models, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    'ImporterContext',
    'ImportSession',
    'ImporterStateMachine',
    'run_batch',
    'MemoryEngine',
    'ImporterSettings',
    'Item',
    'ItemType',
]
