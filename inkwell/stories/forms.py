from flask_wtf import FlaskForm
from wtforms import StringField, SubmitField, TextAreaField
from wtforms.validators import InputRequired, Length


class StoryForm(FlaskForm):
    title = StringField("Story title", validators=[InputRequired(), Length(max=200)])
    opening = TextAreaField("Opening paragraph", validators=[Length(max=5000)])
    submit = SubmitField("Start story")
