from __future__ import annotations

import csv
import datetime as dt
import io
import uuid
from unittest import mock

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from school_meals.models import Menu, Role, Selection, Student
from school_meals.services.menus import save_menu

from .support import ApiTestCase

MENU_DATA = {
    "monday": {
        "standard": {"description": "Chicken soup with bread"},
        "vegetarian": "Bean stew",
    },
    "tuesday": {"standard": {"description": "Moussaka"}},
}


class MenuTestCase(ApiTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.admin, self.admin_headers = await self.create_user("admin@example.com", role=Role.ADMIN)
        self.parent, self.parent_headers = await self.create_user(
            "parent@example.com", children=[{"id": "c1"}, {"id": "c2"}]
        )

    async def _add_menu(self, week_start: dt.date, **kwargs) -> Menu:
        async with self.Session() as session:
            menu = Menu(
                week_start=week_start,
                week_end=week_start + dt.timedelta(days=4),
                menu_data=kwargs.get("menu_data", MENU_DATA),
                created_by=self.admin.id,
            )
            session.add(menu)
            await session.commit()
            await session.refresh(menu)
            return menu


class MenuRoutesTest(MenuTestCase):
    async def test_current_menu_is_latest_week(self):
        await self._add_menu(dt.date(2024, 9, 2))
        latest = await self._add_menu(dt.date(2024, 9, 16))
        await self._add_menu(dt.date(2024, 9, 9))

        resp = await self.client.get("/api/menu")

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["menu"]["id"], str(latest.id))

    async def test_current_menu_missing(self):
        resp = await self.client.get("/api/menu")
        self.assertEqual(resp.status_code, 404)
        self.assertFalse(resp.json()["success"])

    async def test_admin_creates_then_updates_same_week(self):
        payload = {"week_start": "2024-09-02", "week_end": "2024-09-06", "menu_data": MENU_DATA}

        resp = await self.client.post("/api/menu", json=payload, headers=self.admin_headers)
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.json()["message"], "Menu created successfully.")
        created = resp.json()["menu"]
        self.assertEqual(created["created_by"], self.admin.id)

        payload["menu_data"] = {"monday": {"standard": "Pasta"}}
        resp = await self.client.post("/api/menu", json=payload, headers=self.admin_headers)
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.json()["message"], "Menu updated successfully.")
        updated = resp.json()["menu"]
        self.assertEqual(updated["id"], created["id"])
        self.assertEqual(updated["menu_data"], {"monday": {"standard": "Pasta"}})
        self.assertEqual(updated["updated_by"], self.admin.id)

        async with self.Session() as session:
            count = await session.scalar(select(func.count()).select_from(Menu))
        self.assertEqual(count, 1)

    async def test_menu_save_requires_admin(self):
        payload = {"week_start": "2024-09-02", "week_end": "2024-09-06", "menu_data": MENU_DATA}

        resp = await self.client.post("/api/menu", json=payload, headers=self.parent_headers)
        self.assertEqual(resp.status_code, 403)

        resp = await self.client.post("/api/menu", json=payload)
        self.assertEqual(resp.status_code, 401)

    async def test_admin_check_without_profile_is_internal_error(self):
        _, headers = await self.create_user("orphan@example.com", with_profile=False)
        payload = {"week_start": "2024-09-02", "week_end": "2024-09-06", "menu_data": MENU_DATA}

        resp = await self.client.post("/api/menu", json=payload, headers=headers)

        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json()["message"], "Unable to verify user role.")

    async def test_menu_save_validates_fields(self):
        for payload in (
            {"week_end": "2024-09-06", "menu_data": MENU_DATA},
            {"week_start": "2024-09-02", "week_end": "2024-09-06"},
            {"week_start": "2024-09-02", "week_end": "2024-09-06", "menu_data": {}},
            {"week_start": "2024-09-06", "week_end": "2024-09-02", "menu_data": MENU_DATA},
        ):
            resp = await self.client.post("/api/menu", json=payload, headers=self.admin_headers)
            self.assertEqual(resp.status_code, 400, payload)

    async def test_history_pages_with_total(self):
        start = dt.date(2024, 1, 1)
        for week in range(15):
            await self._add_menu(start + dt.timedelta(weeks=week))

        resp = await self.client.get(
            "/api/menu/history", params={"limit": 10, "offset": 0}, headers=self.admin_headers
        )

        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(len(body["menus"]), 10)
        self.assertEqual(body["total"], 15)
        self.assertEqual(body["limit"], 10)
        self.assertEqual(body["offset"], 0)
        starts = [m["week_start"] for m in body["menus"]]
        self.assertEqual(starts, sorted(starts, reverse=True))
        self.assertEqual(starts[0], (start + dt.timedelta(weeks=14)).isoformat())
        self.assertEqual(set(body["menus"][0]), {"id", "week_start", "week_end", "created_at"})

        resp = await self.client.get(
            "/api/menu/history", params={"limit": 10, "offset": 10}, headers=self.admin_headers
        )
        self.assertEqual(len(resp.json()["menus"]), 5)

    async def test_history_requires_admin(self):
        resp = await self.client.get("/api/menu/history", headers=self.parent_headers)
        self.assertEqual(resp.status_code, 403)


class MenuExportTest(MenuTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.menu = await self._add_menu(dt.date(2024, 9, 2))

    async def _add_selection(self, student_id: str, day: str, meal_type: str, **kwargs):
        async with self.Session() as session:
            session.add(
                Selection(
                    menu_id=self.menu.id,
                    student_id=student_id,
                    parent_id=self.parent.id,
                    day=day,
                    date=kwargs.get("date", dt.date(2024, 9, 2)),
                    meal_type=meal_type,
                    special_requirements=kwargs.get("special_requirements"),
                )
            )
            await session.commit()

    async def test_export_requires_menu_or_week(self):
        resp = await self.client.get(
            "/api/menu/export", params={"week_start": "2024-09-02"}, headers=self.admin_headers
        )
        self.assertEqual(resp.status_code, 400)

    async def test_export_unknown_menu(self):
        resp = await self.client.get(
            "/api/menu/export", params={"menu_id": str(uuid.uuid4())}, headers=self.admin_headers
        )
        self.assertEqual(resp.status_code, 404)

    async def test_export_without_selections_is_not_found(self):
        resp = await self.client.get(
            "/api/menu/export", params={"menu_id": str(self.menu.id)}, headers=self.admin_headers
        )
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json()["message"], "No selections found for this menu.")

    async def test_export_csv_attachment(self):
        async with self.Session() as session:
            session.add(Student(id="c1", first_name="Ani", last_name="Petrova", class_name="2A"))
            await session.commit()
        await self._add_selection("c1", "monday", "vegetarian", special_requirements="No nuts")
        await self._add_selection("c2", "tuesday", "standard", date=dt.date(2024, 9, 3))

        resp = await self.client.get(
            "/api/menu/export",
            params={"week_start": "2024-09-02", "week_end": "2024-09-06"},
            headers=self.admin_headers,
        )

        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.headers["content-type"].startswith("text/csv"))
        self.assertEqual(
            resp.headers["content-disposition"],
            'attachment; filename="menu-selections-2024-09-02-to-2024-09-06.csv"',
        )
        rows = list(csv.reader(io.StringIO(resp.text)))
        self.assertEqual(
            rows[0],
            ["Date", "Day", "Student Name", "Class", "Meal Type", "Menu Description", "Special Requirements"],
        )
        self.assertEqual(
            rows[1],
            ["2024-09-02", "monday", "Ani Petrova", "2A", "vegetarian", "Bean stew", "No nuts"],
        )
        # c2 has no students row: name and class stay blank
        self.assertEqual(rows[2], ["2024-09-03", "tuesday", "", "", "standard", "Moussaka", ""])

    async def test_export_requires_admin(self):
        resp = await self.client.get(
            "/api/menu/export", params={"menu_id": str(self.menu.id)}, headers=self.parent_headers
        )
        self.assertEqual(resp.status_code, 403)


class MenuWriteRecoveryTest(MenuTestCase):
    PAYLOAD = {"week_start": "2024-09-02", "week_end": "2024-09-06", "menu_data": MENU_DATA}

    async def _count_menus(self) -> int:
        async with self.Session() as session:
            return await session.scalar(select(func.count()).select_from(Menu))

    async def test_insert_colliding_with_existing_week_becomes_update(self):
        first = await self.client.post("/api/menu", json=self.PAYLOAD, headers=self.admin_headers)

        with mock.patch("school_meals.services.menus._find_menu_for_week", return_value=None):
            resp = await self.client.post(
                "/api/menu",
                json={**self.PAYLOAD, "menu_data": {"monday": {"standard": "Pasta"}}},
                headers=self.admin_headers,
            )

        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.json()["message"], "Menu updated successfully.")
        self.assertEqual(resp.json()["menu"]["id"], first.json()["menu"]["id"])
        self.assertEqual(resp.json()["menu"]["menu_data"], {"monday": {"standard": "Pasta"}})
        self.assertEqual(await self._count_menus(), 1)

    async def test_failed_lookup_still_inserts(self):
        async with self.Session() as session:
            with mock.patch.object(
                session, "scalar", side_effect=OperationalError("SELECT", {}, Exception("db down"))
            ):
                menu, created = await save_menu(
                    session,
                    week_start=dt.date(2024, 9, 2),
                    week_end=dt.date(2024, 9, 6),
                    menu_data=MENU_DATA,
                    actor_id=self.admin.id,
                )

        self.assertTrue(created)
        self.assertEqual(menu.created_by, self.admin.id)
        self.assertEqual(await self._count_menus(), 1)

    async def test_failed_lookup_on_existing_week_ends_as_update(self):
        existing = await self._add_menu(dt.date(2024, 9, 2))

        async with self.Session() as session:
            real_scalar = session.scalar
            calls = []

            async def lookup_fails_once(*args, **kwargs):
                calls.append(args)
                if len(calls) == 1:
                    raise OperationalError("SELECT", {}, Exception("db down"))
                return await real_scalar(*args, **kwargs)

            with mock.patch.object(session, "scalar", side_effect=lookup_fails_once):
                menu, created = await save_menu(
                    session,
                    week_start=dt.date(2024, 9, 2),
                    week_end=dt.date(2024, 9, 6),
                    menu_data={"monday": {"standard": "Pasta"}},
                    actor_id=self.admin.id,
                )

        self.assertFalse(created)
        self.assertEqual(menu.id, existing.id)
        self.assertEqual(menu.menu_data, {"monday": {"standard": "Pasta"}})
        self.assertEqual(menu.updated_by, self.admin.id)
        self.assertEqual(await self._count_menus(), 1)
