"""
seed_data.py – Populate the SafePath database with a small Edinburgh demo set.

Run once (or whenever the database is empty) to create:
  - 12 fictional users with varied demographic profiles
  - 16 reviewed locations
  - ~90 reviews, aggregated into per-demographic safety_scores rows
  - 1 danger zone, 3 neighbourhood statistics boxes, 1 active route
"""
import random
from collections import defaultdict
from datetime import datetime, timedelta, timezone

# Locations: (name, lat, lng, place_type, mean_safety, std_dev)
# mean_safety is on the 1–5 scale; safer places score higher.
LOCATIONS = [
    ("Waverley Station",       55.9520, -3.1900, "transit_station", 3.4, 0.8),
    ("Princes Street Gardens", 55.9508, -3.2010, "park",            3.9, 0.6),
    ("Grassmarket Bar",        55.9471, -3.1955, "bar",             2.8, 0.9),
    ("Cowgate Club",           55.9480, -3.1880, "nightclub",       2.3, 0.9),
    ("Royal Mile Café",        55.9500, -3.1880, "restaurant",      4.1, 0.5),
    ("Leith Shore Bistro",     55.9760, -3.1700, "restaurant",      3.8, 0.6),
    ("Leith Walk Bus Stop",    55.9650, -3.1780, "transit_station", 3.0, 0.8),
    ("The Meadows",            55.9400, -3.1890, "park",            3.6, 0.7),
    ("Marchmont Library",      55.9365, -3.1875, "library",         4.5, 0.4),
    ("Bruntsfield Links",      55.9370, -3.2010, "park",            3.9, 0.5),
    ("Tollcross Corner Shop",  55.9432, -3.2025, "store",           3.3, 0.7),
    ("Lothian Road Bar",       55.9460, -3.2055, "bar",             2.7, 0.9),
    ("Haymarket Station",      55.9458, -3.2185, "transit_station", 3.7, 0.6),
    ("Stockbridge Market",     55.9590, -3.2130, "store",           4.4, 0.4),
    ("Dean Village Path",      55.9540, -3.2210, "park",            3.5, 0.8),
    ("Calton Hill Steps",      55.9553, -3.1790, "park",            2.9, 0.9),
]

# Users: (username, race_ethnicity, gender, lgbtq_status, religion, disability, age_range)
USERS = [
    ("aisling_m", ["white"],                  "woman",      False, None,        [],                "18-24"),
    ("priya_k",   ["south_asian"],            "woman",      False, "hindu",     [],                "18-24"),
    ("mei_chen",  ["east_asian"],             "woman",      True,  None,        [],                "25-34"),
    ("fatima_a",  ["black", "middle_eastern"], "woman",     False, "muslim",    [],                "25-34"),
    ("jordan_l",  ["black"],                  "non_binary", True,  None,        ["mobility"],      "25-34"),
    ("rosa_v",    ["hispanic_latino"],        "woman",      True,  "catholic",  [],                "35-44"),
    ("tom_h",     ["white"],                  "man",        False, None,        [],                "35-44"),
    ("sam_o",     ["white"],                  "man",        True,  "jewish",    [],                "18-24"),
    ("nadia_c",   ["middle_eastern"],         "woman",      False, "muslim",    ["visual"],        "45-54"),
    ("kwame_d",   ["black"],                  "man",        False, "christian", [],                "35-44"),
    ("isla_m",    ["white"],                  "woman",      False, None,        ["hearing"],       "55-64"),
    ("yuki_t",    ["east_asian"],             "woman",      False, "buddhist",  [],                "18-24"),
]

# Danger zone around the Cowgate late-night strip: [lat, lng] ring
DANGER_ZONES = [
    ("Cowgate late-night strip", 1.5, [
        [55.9486, -3.1930], [55.9486, -3.1860],
        [55.9472, -3.1860], [55.9472, -3.1930],
    ]),
]

# Neighbourhood statistics: (name, min_lat, max_lat, min_lng, max_lng,
#   crime_per_1000, violent_rate, hate_incidents, diversity_index, pct_minority)
NEIGHBORHOODS = [
    ("Old Town",  55.9440, 55.9540, -3.2060, -3.1800, 62.0, 12.0, 6, 0.55, 18.0),
    ("Leith",     55.9600, 55.9800, -3.1850, -3.1600, 48.0,  9.0, 4, 0.68, 24.0),
    ("Southside", 55.9330, 55.9440, -3.2100, -3.1800, 21.0,  3.0, 1, 0.62, 20.0),
]

# Demo rider currently heading from Haymarket to Waverley
DEMO_ROUTE_USER = "mei_chen"
DEMO_ROUTE = [
    [55.9458, -3.2185], [55.9490, -3.2080], [55.9508, -3.2010],
    [55.9515, -3.1960], [55.9520, -3.1900],
]


def _buckets(user):
    """The (demographic_type, demographic_value) buckets a reviewer falls into."""
    yield ("overall", None)
    for race in user.race_ethnicity or []:
        yield ("race_ethnicity", race)
    if user.gender:
        yield ("gender", user.gender)
    if user.lgbtq_status is not None:
        yield ("lgbtq", "yes" if user.lgbtq_status else "no")
    if user.religion:
        yield ("religion", user.religion)
    for disability in user.disability_status or []:
        yield ("disability", disability)


def _clamp(value):
    return max(1.0, min(5.0, value))


def seed(app, db_instance):
    """
    Seed the database with the Edinburgh demo set.
    Safe to call multiple times – skips seeding if data already present.
    """
    from safepath.database import (User, Location, Review, SafetyScore, DangerZone,
                                   NeighborhoodStats, ActiveRoute)

    log = app.logger

    with app.app_context():
        # Skip if already seeded
        if User.query.count() > 0:
            log.info("[seed] Database already contains data – skipping seed.")
            return

        rng = random.Random(42)  # reproducible seed
        now = datetime.now(timezone.utc).replace(tzinfo=None)

        log.info("[seed] Seeding users...")
        users = {}
        for (uname, race, gender, lgbtq, religion, disability, age) in USERS:
            u = User(username=uname, race_ethnicity=race, gender=gender,
                     lgbtq_status=lgbtq, religion=religion,
                     disability_status=disability, age_range=age,
                     push_token=f"ExponentPushToken[{uname}]",
                     notification_preferences={})
            db_instance.session.add(u)
            users[uname] = u
        db_instance.session.flush()  # get IDs without committing

        log.info("[seed] Seeding locations and reviews...")
        n_reviews = 0
        for (name, lat, lng, place_type, mean, std) in LOCATIONS:
            loc = Location(name=name, latitude=lat, longitude=lng, place_type=place_type)
            db_instance.session.add(loc)
            db_instance.session.flush()

            # bucket → list of (safety, comfort, overall)
            grouped = defaultdict(list)
            for reviewer in rng.sample(list(users.values()), rng.randint(4, 8)):
                safety  = round(_clamp(rng.gauss(mean, std)), 1)
                comfort = round(_clamp(safety + rng.uniform(-0.5, 0.5)), 1)
                overall = round((safety + comfort) / 2, 1)
                db_instance.session.add(Review(
                    location_id=loc.id, user_id=reviewer.id,
                    safety_rating=safety, comfort_rating=comfort, overall_rating=overall,
                    # keep seeded reviews out of the hazard batch window
                    created_at=now - timedelta(days=rng.randint(1, 180)),
                ))
                n_reviews += 1
                for bucket in _buckets(reviewer):
                    grouped[bucket].append((safety, comfort, overall))

            for (demo_type, demo_value), triples in grouped.items():
                n = len(triples)
                db_instance.session.add(SafetyScore(
                    location_id=loc.id,
                    demographic_type=demo_type,
                    demographic_value=demo_value,
                    avg_safety_score=sum(t[0] for t in triples) / n,
                    avg_comfort_score=sum(t[1] for t in triples) / n,
                    avg_overall_score=sum(t[2] for t in triples) / n,
                    review_count=n,
                ))

        log.info("[seed] Seeding danger zones and neighbourhood statistics...")
        for (description, severity, ring) in DANGER_ZONES:
            db_instance.session.add(DangerZone.from_polygon(
                ring, description=description, severity_multiplier=severity))

        for (name, min_lat, max_lat, min_lng, max_lng,
             crime, violent, hate, diversity, minority) in NEIGHBORHOODS:
            db_instance.session.add(NeighborhoodStats(
                name=name, min_lat=min_lat, max_lat=max_lat,
                min_lng=min_lng, max_lng=max_lng,
                crime_rate_per_1000=crime, violent_crime_rate=violent,
                hate_crime_incidents=hate, diversity_index=diversity,
                pct_minority=minority,
            ))

        db_instance.session.add(ActiveRoute(user_id=users[DEMO_ROUTE_USER].id,
                                            coordinates=DEMO_ROUTE, is_active=True,
                                            started_at=now - timedelta(minutes=10)))

        db_instance.session.commit()
        log.info("[seed] Done. %d users, %d locations, %d reviews.",
                 len(USERS), len(LOCATIONS), n_reviews)
