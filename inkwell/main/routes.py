from flask import abort, flash, jsonify, redirect, render_template, url_for
from flask_login import current_user, login_required
from flask_wtf.csrf import generate_csrf

from ..extensions import db
from ..models import Story
from ..stories.forms import StoryForm
from . import bp


@bp.route("/")
def index():
    if current_user.is_authenticated:
        return redirect(url_for("main.dashboard"))
    return render_template("main/landing.html")


@bp.route("/dashboard", methods=["GET", "POST"])
@login_required
def dashboard():
    form = StoryForm()
    if form.validate_on_submit():
        story = Story(
            title=form.title.data.strip(),
            content=(form.opening.data or "").strip() or None,
            owner=current_user,
        )
        db.session.add(story)
        db.session.commit()
        flash("Story created.", "success")
        return redirect(url_for("main.story_detail", story_id=story.id))

    stories = (
        Story.query.filter_by(owner_id=current_user.id)
        .order_by(Story.updated_at.desc())
        .all()
    )
    return render_template("main/dashboard.html", stories=stories, form=form)


@bp.route("/stories/<int:story_id>")
@login_required
def story_detail(story_id: int):
    story = db.get_or_404(Story, story_id)
    if story.owner_id != current_user.id:
        abort(403)
    return render_template("main/story.html", story=story)


@bp.route("/api/csrf-token")
def csrf_token():
    return jsonify({"csrfToken": generate_csrf()})
