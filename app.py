"""
app.py
Streamlit Gym Membership Tracker (admin-only).
Run: streamlit run app.py
"""

from __future__ import annotations

from datetime import date

import streamlit as st

import auth
import utils
from cache import MemberCache
from config import configure_logging, settings
from db import Database
from errors import NotFound, RemoteUnavailable, ValidationError
from models import PAYMENT_METHODS, SUBSCRIPTION_PRICES, SUBSCRIPTION_TYPES


st.set_page_config(page_title="Gym Membership Tracker", layout="wide")

STATUS_LABELS = {"active": "🟢 Active", "due": "🟡 Due", "overdue": "🔴 Overdue"}


@st.cache_resource
def get_database() -> Database:
    configure_logging()
    database = Database(settings.DB_FILE).open()
    # Initialize schema + default admin if needed
    database.init_schema(auth.hash_password("admin123"))
    return database


def get_cache() -> MemberCache:
    return MemberCache(get_database(), storage=st.session_state)


def require_login():
    if "admin_session" not in st.session_state:
        st.session_state.admin_session = None


def logout():
    st.session_state.admin_session = None
    st.success("Logged out.")


def show_errors(exc: Exception) -> None:
    if isinstance(exc, ValidationError):
        for e in exc.errors:
            st.error(e)
    elif isinstance(exc, RemoteUnavailable):
        st.error(f"Database unavailable: {exc}")
    else:
        st.error(str(exc))


def login_screen():
    st.title("🔐 Gym Admin Login")

    col1, col2 = st.columns([1, 1])
    with col1:
        username = st.text_input("Username", value="admin")
        password = st.text_input("Password", type="password")
        if st.button("Login", type="primary"):
            if auth.login(get_database(), username.strip(), password):
                st.session_state.admin_session = auth.start_session(username.strip())
                st.rerun()
            else:
                st.error("Invalid username or password.")

    with col2:
        st.info(
            "First run creates a default admin:\n\n"
            "- username: **admin**\n"
            "- password: **admin123**\n\n"
            "You will be forced to change it on first login."
        )


def password_form(key: str) -> None:
    new1 = st.text_input("New password", type="password", key=f"{key}_new1")
    new2 = st.text_input("Confirm new password", type="password", key=f"{key}_new2")

    if st.button("Update password", type="primary", key=f"{key}_submit"):
        problems = auth.validate_password_strength(new1)
        if new1 != new2:
            problems.append("Passwords do not match.")
        if problems:
            for p in problems:
                st.error(p)
            return
        auth.change_password(get_database(), st.session_state.admin_session.username, new1)
        st.success("Password updated.")
        st.rerun()


def force_change_password_screen():
    st.title("⚠️ Change Password (Required)")
    st.warning("You must change the default password before using the app.")
    password_form("force")


def member_table(members) -> None:
    df = utils.members_frame(members)
    if not df.empty:
        df["status"] = df["status"].map(STATUS_LABELS)
    st.dataframe(df, use_container_width=True, hide_index=True)


def dashboard_page(cache: MemberCache):
    st.header("📊 Dashboard")

    members = cache.get_members()
    counts = {s: sum(1 for m in members if m.status == s) for s in STATUS_LABELS}
    this_month = date.today().isoformat()[:7]
    monthly_rev = utils.revenue_for_month(cache.payment_history, this_month)

    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Active", counts["active"])
    c2.metric("Due", counts["due"])
    c3.metric("Overdue", counts["overdue"])
    c4.metric("Revenue this month", f"KSh {monthly_rev:,.0f}")
    st.caption(f"Cache: {cache.freshness()}")

    st.divider()

    st.subheader("Due soon")
    due = cache.get_members("due")
    if due:
        member_table(sorted(due, key=lambda m: m.due_date))
    else:
        st.caption("No members due.")

    st.subheader("Incomplete payments")
    incomplete = cache.incomplete_payments()
    if incomplete:
        member_table(incomplete)
    else:
        st.caption("All payments complete.")


def members_page(cache: MemberCache):
    st.header("👥 Members")

    with st.sidebar:
        st.subheader("Search & Filters")
        search = st.text_input("Search (name/contact)")
        status_filter = st.selectbox("Status", ["All", "active", "due", "overdue"])

    cache.load()
    rows = cache.search(search)
    if status_filter != "All":
        rows = [m for m in rows if m.status == status_filter]
    member_table(sorted(rows, key=lambda m: m.due_date))

    st.divider()

    options = {f"{m.full_name} ({m.contact_number}) - ID {m.id}": m.id for m in rows}
    chosen = st.selectbox("Member", ["(none)"] + list(options.keys()))
    if chosen != "(none)":
        member_id = options[chosen]
        c1, c2, c3, c4 = st.columns(4)
        with c1:
            if st.button("Check in"):
                try:
                    if cache.check_in(member_id):
                        st.success("Checked in.")
                    else:
                        st.info("Already checked in today.")
                except (NotFound, RemoteUnavailable) as exc:
                    show_errors(exc)
        with c2:
            if st.button("Complete payment"):
                try:
                    cache.complete_payment(member_id)
                    st.success("Payment marked complete.")
                    st.rerun()
                except (NotFound, RemoteUnavailable) as exc:
                    show_errors(exc)
        with c3:
            new_amount = st.text_input("New amount paid", key="adjust_amount")
            if st.button("Adjust payment"):
                try:
                    cache.adjust_payment(member_id, new_amount)
                    st.success("Payment updated.")
                    st.rerun()
                except (ValidationError, NotFound, RemoteUnavailable) as exc:
                    show_errors(exc)
        with c4:
            delete_confirm = st.checkbox("Confirm delete", value=False, key="del_confirm")
            if st.button("Delete", type="secondary", disabled=not delete_confirm):
                try:
                    cache.delete_member(member_id)
                    st.success("Member deleted.")
                    st.rerun()
                except (NotFound, RemoteUnavailable) as exc:
                    show_errors(exc)

    st.divider()

    st.subheader("Overdue members")
    overdue_confirm = st.checkbox("Confirm delete all overdue", value=False)
    if st.button("Delete all overdue", disabled=not overdue_confirm):
        try:
            deleted = cache.delete_all_overdue()
            st.success(f"Deleted {deleted} overdue member(s).")
            st.rerun()
        except (NotFound, RemoteUnavailable) as exc:
            show_errors(exc)


def register_page(cache: MemberCache):
    st.header("➕ Register Member")

    col1, col2, col3 = st.columns(3)
    with col1:
        full_name = st.text_input("Full name")
        contact = st.text_input("Contact number")
    with col2:
        subscription_type = st.selectbox("Subscription", SUBSCRIPTION_TYPES, index=1)
        amount = st.text_input("Amount paid", value=f"{SUBSCRIPTION_PRICES[subscription_type]:.0f}")
        method = st.selectbox("Payment method", PAYMENT_METHODS)
    with col3:
        registration_date = st.date_input("Registration date", value=date.today())
        auto_due = utils.calc_due_date(registration_date, subscription_type)
        due_date = st.date_input("Due date (auto-calculated, editable)", value=auto_due)
        complete = st.checkbox("Payment complete", value=True)

    if st.button("Register", type="primary"):
        try:
            member = cache.register(
                {
                    "fullName": full_name,
                    "contactNumber": contact,
                    "subscriptionType": subscription_type,
                    "amountPaid": amount,
                    "paymentMethod": method,
                    "paymentComplete": complete,
                    "registrationDate": registration_date,
                    "dueDate": due_date,
                }
            )
            st.success(f"Registered {member.full_name} ({STATUS_LABELS[member.status]}).")
        except (ValidationError, RemoteUnavailable) as exc:
            show_errors(exc)


def renewals_page(cache: MemberCache):
    st.header("🔁 Renewals")

    members = sorted(cache.get_members(), key=lambda m: m.full_name)
    if not members:
        st.info("No members yet.")
        return

    options = {f"{m.full_name} ({m.contact_number}) - ID {m.id}": m for m in members}
    m = options[st.selectbox("Member", list(options.keys()))]

    st.write(
        f"Plan: **{m.subscription_type}** | Paid: **{m.amount_paid:,.0f}** | "
        f"Due: **{m.due_date.isoformat()}** | Status: **{STATUS_LABELS[m.status]}**"
    )

    # Renew from the current due date while still active, else from today
    start = m.due_date if m.due_date >= date.today() else date.today()
    col1, col2, col3 = st.columns(3)
    with col1:
        new_due = st.date_input("New due date", value=utils.calc_due_date(start, m.subscription_type))
    with col2:
        amount = st.text_input("Amount paid", value=f"{SUBSCRIPTION_PRICES[m.subscription_type]:.0f}")
    with col3:
        complete = st.checkbox("Payment complete", value=True, key="renew_complete")

    if st.button("Renew", type="primary"):
        try:
            cache.renew(m.id, new_due, amount, complete)
            st.success("Renewal completed.")
            st.rerun()
        except (ValidationError, NotFound, RemoteUnavailable) as exc:
            show_errors(exc)


def revenue_page(cache: MemberCache):
    st.header("💰 Revenue")

    cache.load()
    history = cache.payment_history
    st.metric("Total revenue", f"KSh {utils.total_revenue(history):,.0f}")

    st.subheader("Revenue by month")
    summary = utils.revenue_summary_by_month(history)
    st.dataframe(summary, use_container_width=True, hide_index=True)
    if not summary.empty:
        st.bar_chart(summary.set_index("month")["revenue"])

    st.subheader("Payments in month")
    months = summary["month"].tolist() if not summary.empty else [date.today().isoformat()[:7]]
    month = st.selectbox("Month", months)
    rows = cache.payment_history_by_month(month)
    if rows:
        names = {m.id: m.full_name for m in cache.snapshot}
        df = utils.transactions_frame(rows)
        df.insert(2, "member", df["member_id"].map(names))
        st.dataframe(df, use_container_width=True, hide_index=True)
    else:
        st.caption("No payments this month.")

    if rows:
        st.subheader("Correct a transaction")
        labels = {f"#{t.id} {t.date.isoformat()} {t.type} KSh {t.amount:,.0f}": t for t in rows}
        tx = labels[st.selectbox("Transaction", list(labels.keys()))]
        c1, c2 = st.columns(2)
        with c1:
            new_amount = st.text_input("Amount", value=f"{tx.amount:.0f}", key="tx_amount")
            new_description = st.text_input("Description", value=tx.description or "", key="tx_description")
            if st.button("Save transaction"):
                try:
                    cache.edit_transaction(tx.id, amount=new_amount, description=new_description)
                    st.success("Transaction updated.")
                    st.rerun()
                except (ValidationError, NotFound, RemoteUnavailable) as exc:
                    show_errors(exc)
        with c2:
            tx_confirm = st.checkbox("Confirm delete", value=False, key="tx_del_confirm")
            if st.button("Delete transaction", disabled=not tx_confirm):
                try:
                    cache.delete_transaction(tx.id)
                    st.success("Transaction deleted.")
                    st.rerun()
                except (NotFound, RemoteUnavailable) as exc:
                    show_errors(exc)


def settings_page(cache: MemberCache):
    st.header("⚙️ Settings")

    st.subheader("Change password")
    password_form("settings")

    st.divider()

    st.subheader("Data")
    c1, c2, c3 = st.columns(3)
    with c1:
        if st.button("Refresh from database"):
            cache.load(force_refresh=True)
            st.success("Member cache refreshed.")
    with c2:
        if st.button("Reconcile statuses"):
            updated = cache.reconcile()
            st.success(f"Updated status for {len(updated)} member(s).")
    with c3:
        if st.button("Insert sample data"):
            try:
                utils.insert_sample_data(cache)
                st.success("Sample data inserted.")
                st.rerun()
            except (ValidationError, RemoteUnavailable) as exc:
                show_errors(exc)

    st.divider()

    st.subheader("Import members from CSV")
    st.caption("Columns: Name, Phone, Subscription Type, Start Date, End Date, Amount Paid, Payment Method, Payment Complete.")
    upload = st.file_uploader("Members CSV", type="csv")
    if upload is not None and st.button("Import"):
        try:
            imported, problems = utils.import_members_csv(cache, upload)
        except RemoteUnavailable as exc:
            show_errors(exc)
        else:
            st.success(f"{len(imported)} member(s) imported.")
            for p in problems:
                st.warning(p)


def main_app(cache: MemberCache):
    session = st.session_state.admin_session
    st.sidebar.title("🏋️ Gym Tracker")
    st.sidebar.caption(f"Logged in as: {session.username}")

    pages = ["Dashboard", "Members", "Register", "Renewals", "Revenue", "Settings"]
    if "page" not in st.session_state:
        st.session_state.page = "Dashboard"
    st.session_state.page = st.sidebar.radio("Navigate", pages, index=pages.index(st.session_state.page))

    if st.sidebar.button("Logout"):
        logout()
        st.rerun()

    if st.session_state.page == "Dashboard":
        dashboard_page(cache)
    elif st.session_state.page == "Members":
        members_page(cache)
    elif st.session_state.page == "Register":
        register_page(cache)
    elif st.session_state.page == "Renewals":
        renewals_page(cache)
    elif st.session_state.page == "Revenue":
        revenue_page(cache)
    elif st.session_state.page == "Settings":
        settings_page(cache)


# --------- App entry ---------

def run():
    database = get_database()
    require_login()

    session = st.session_state.admin_session
    if session is not None and not auth.is_session_valid(session):
        st.session_state.admin_session = None
        st.warning("Session expired. Please log in again.")

    if st.session_state.admin_session is None:
        login_screen()
        return

    # Force password change on first login after DB creation
    if database.is_force_password_change():
        force_change_password_screen()
        return

    main_app(get_cache())


if __name__ == "__main__":
    run()
