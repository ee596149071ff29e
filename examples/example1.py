"""
Walk through an editing session against the Firestore emulator:

    gcloud emulators firestore start --host-port=localhost:8080
    FIRESTORE_EMULATOR_HOST=localhost:8080 python examples/example1.py
"""
import asyncio
import logging
from functools import wraps

from bookforge import AuthContext, BookforgeSettings, EditorSession, init_bookforge
from bookforge.library import create_book, list_published_books

logging.basicConfig(level=logging.INFO)


def async_decorator(f):
    """Decorator to allow calling an async function like a sync function"""
    @wraps(f)
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))
    return wrapper


def show(notice):
    print(f"[{notice.level}] {notice.title} {notice.description}")


@async_decorator
async def main():
    # 1. Connect and bind the models
    settings = BookforgeSettings.from_env()
    init_bookforge(settings.create_db())

    # 2. Create a book; it starts with one chapter
    ada = AuthContext(uid="ada", display_name="Ada", email_verified=True)
    book = await create_book(ada, "The Analytical Engine", "Notes on a machine")

    # 3. Open an editor session with autosave off and save by hand
    settings.autosave = False
    session = EditorSession(ada, book.id, settings=settings, notify=show)
    await session.open()
    session.edit_chapter_content("<p>The engine weaves algebraic patterns.</p>")
    await session.save()

    # 4. Add chapters and move the last one to the front
    await session.add_chapter("Note G")
    await session.add_chapter("Preface")
    await session.move_chapter(2, 0)
    print([c.title for c in session.ordering.chapters])

    # 5. Publishing needs a cover image
    outcome = await session.publish()
    print(outcome.status, outcome.message)
    session.edit_cover_image("https://example.com/cover.png")
    await session.publish()

    # 6. Published books show up in the catalog
    for published in await list_published_books():
        print(published.title, published.status)

    # 7. Deleting the book removes its chapters and reviews too
    outcome = await session.delete_book()
    print(outcome.message, outcome.value)


if __name__ == "__main__":
    main()
