from collections.abc import Iterable

from src.wikisync.domain.models import Attribution, DerivedUser, PageSummary, VoteEvent


def consolidate_users(
    pages: Iterable[PageSummary],
    votes: Iterable[VoteEvent],
    attributions: Iterable[Attribution],
) -> list[DerivedUser]:
    """Derive users from data already in memory. Makes no network calls."""
    users: dict[int, DerivedUser] = {}
    creator_by_page: dict[str, int] = {}

    def ensure(wikidot_id: int, display_name: str | None, role: str) -> DerivedUser:
        user = users.get(wikidot_id)
        if user is None:
            user = DerivedUser(wikidot_id=wikidot_id, display_name=display_name)
            users[wikidot_id] = user
        elif user.display_name is None and display_name:
            user.display_name = display_name
        user.roles.add(role)
        return user

    for page in pages:
        if page.created_by_id is None:
            continue
        ensure(page.created_by_id, page.created_by_name, "author").pages_created += 1
        creator_by_page[page.url] = page.created_by_id

    for vote in votes:
        if vote.voter_id is not None:
            ensure(vote.voter_id, vote.voter_name, "voter").total_votes_given += 1
        creator_id = creator_by_page.get(vote.page_url)
        if creator_id is not None and creator_id in users:
            users[creator_id].total_votes_received += 1

    for attribution in attributions:
        if attribution.user_id is None:
            continue
        ensure(attribution.user_id, attribution.user_name, "contributor")

    return sorted(users.values(), key=lambda user: user.wikidot_id)
