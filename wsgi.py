from storyweaver import create_app

app = create_app()
