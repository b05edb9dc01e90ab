"""Seed a development database with users, taxonomy, posts and comment threads.

Everything goes through the service layer so seeded data obeys the same
slug, taxonomy and moderation rules as API traffic.
"""
import argparse
import asyncio
import logging
import random
import time

from blog_api.database import Base, async_session, engine
from blog_api.logging_config import configure_logging
from blog_api.models import UserRole
from blog_api.schemas import CategoryCreate, CommentCreate, CommentReply, PostCreate, UserCreate
from blog_api.services import comment_service, post_service, taxonomy_service, user_service

logger = logging.getLogger("seed")

CATEGORIES = [
    ("Technology & Innovation", "Gadgets, software and the people who build them"),
    ("Engineering Notes", "Deep dives and war stories"),
    ("Product", None),
    ("Culture", None),
]

TAGS = ["python", "fastapi", "postgresql", "redis", "docker", "kubernetes",
        "react", "typescript", "aws", "devops", "testing", "performance",
        "security", "microservices", "graphql", "rest-api"]


async def seed(small: bool = False) -> None:
    num_authors = 3 if small else 10
    num_readers = 5 if small else 40
    num_posts = 20 if small else 500
    max_comments = 2 if small else 6

    start = time.perf_counter()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as db:
        await user_service.create_user(
            db, UserCreate(username="admin", email="admin@example.com"), role=UserRole.ADMIN
        )
        authors = [
            await user_service.create_user(
                db,
                UserCreate(
                    username=f"author_{i:03d}",
                    email=f"author_{i:03d}@example.com",
                    display_name=f"Author {i}",
                ),
                role=UserRole.AUTHOR,
            )
            for i in range(num_authors)
        ]
        readers = [
            await user_service.create_user(
                db, UserCreate(username=f"reader_{i:03d}", email=f"reader_{i:03d}@example.com")
            )
            for i in range(num_readers)
        ]
        logger.info("Created %d authors and %d readers", len(authors), len(readers))

        categories = [
            await taxonomy_service.create_category(
                db, CategoryCreate(name=name, description=description)
            )
            for name, description in CATEGORIES
        ]

        comment_count = 0
        for i in range(num_posts):
            topic = random.choice(TAGS)
            post = await post_service.create_post(
                db,
                random.choice(authors).id,
                PostCreate(
                    title=f"How we tuned {topic} in production",
                    content=f"This is the full content of post {i}. " * 20,
                    summary=f"Notes on running {topic} at scale.",
                    is_draft=random.random() < 0.1,
                    category_ids=[c.id for c in random.sample(categories, k=random.randint(1, 2))],
                    tags=random.sample(TAGS, k=random.randint(1, 4)),
                ),
            )
            if post.status.value != "published":
                continue
            for _ in range(random.randint(0, max_comments)):
                comment = await comment_service.create_comment(
                    db,
                    random.choice(readers).id,
                    CommentCreate(post_id=post.id, content="Great write-up, thanks!"),
                )
                comment_count += 1
                if random.random() < 0.3:
                    await comment_service.reply_to_comment(
                        db,
                        comment.id,
                        post.author_id,
                        CommentReply(content="Glad it helped."),
                    )
                    comment_count += 1

        await db.commit()

    elapsed = time.perf_counter() - start
    logger.info(
        "Seeded %d posts, %d comments, %d categories, %d tag names in %.1fs",
        num_posts,
        comment_count,
        len(CATEGORIES),
        len(TAGS),
        elapsed,
    )


def main():
    parser = argparse.ArgumentParser(description="Seed the blog database")
    parser.add_argument("--small", action="store_true", help="Use small dataset (20 posts)")
    args = parser.parse_args()
    configure_logging()
    asyncio.run(seed(small=args.small))


if __name__ == "__main__":
    main()
