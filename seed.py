import click
from faker import Faker
from datetime import timedelta
from memberhub import create_app, db
from memberhub.models import User, UserUnlock
from memberhub.content.models import ContentItem, Topic, Lesson, LessonLink
from memberhub.utils.datetime_tools import utcnow

fake = Faker()

app = create_app()


def _lessons(count):
    out = []
    for pos in range(1, count + 1):
        lesson = Lesson(
            title=f"Lesson {pos}: {fake.catch_phrase()}",
            description=fake.paragraph(nb_sentences=2),
            media_url=f"https://videos.example.com/{fake.uuid4()}.mp4",
            position=pos,
        )
        lesson.links.append(LessonLink(title="Worksheet", url=fake.url()))
        out.append(lesson)
    return out


@app.cli.command("seed")
@click.option("--members", default=5, show_default=True, help="Number of member accounts.")
def seed(members):
    """Wipe DB and seed members plus gated courses and products."""
    click.echo("➡️ Dropping database...")
    db.drop_all()
    db.session.commit()

    click.echo("➡️ Recreating tables...")
    db.create_all()

    now = utcnow()

    # ✅ Members, registered at different points in the past so countdowns differ
    users = []
    for i in range(members):
        u = User(
            email=f"member{i + 1}@example.com",
            name=fake.name(),
            registration_date=now - timedelta(days=i * 4),
        )
        u.set_password("password1")
        users.append(u)
    db.session.add_all(users)
    db.session.commit()
    click.echo(f"✅ {len(users)} members seeded")

    # ✅ Content with every gating rule
    intro = ContentItem(kind="course", title="Getting Started", description=fake.paragraph())
    intro.lessons.extend(_lessons(3))

    week_one = ContentItem(kind="course", title="Week One Deep Dive", description=fake.paragraph(),
                           is_blocked=True, unlock_after_days=7)
    week_one.lessons.extend(_lessons(2))
    topic = Topic(title="Bonus material", position=1)
    topic.lessons.extend(_lessons(2))
    week_one.topics.append(topic)

    coaching = ContentItem(kind="course", title="1:1 Coaching Vault", description=fake.paragraph(),
                           is_blocked=True, manual_unlock_only=True,
                           unblock_link="https://example.com/upgrade")
    coaching.lessons.extend(_lessons(1))

    vip = ContentItem(kind="course", title="VIP Workshop Replays", description=fake.paragraph(),
                      is_blocked=True)
    vip.lessons.extend(_lessons(2))

    launch = ContentItem(kind="course", title="Launch Masterclass", description=fake.paragraph(),
                         is_blocked=True, scheduled_unlock_date=now + timedelta(minutes=10))
    launch.lessons.extend(_lessons(4))

    toolkit = ContentItem(kind="product", title="Templates Toolkit", description=fake.paragraph(),
                          is_blocked=True, unlock_after_days=14)
    planner = ContentItem(kind="product", title="Printable Planner", description=fake.paragraph())

    db.session.add_all([intro, week_one, coaching, vip, launch, toolkit, planner])
    db.session.commit()
    click.echo("✅ Content seeded")

    # ✅ One manual grant so the override path has data
    if users:
        users[0].unlocks.append(UserUnlock(content_item_id=vip.id, kind=vip.kind))
        db.session.commit()
        click.echo(f"✅ {users[0].email} granted {vip.title}")

    click.echo(f"🎉 Seed complete: members log in with password1, admin is {app.config['ADMIN_EMAIL']}")
