"""
Test cases for the todo list REST API lab.

Students build an Express server on port 3000 with these routes:
    POST   /todos        create a todo, returns it with its _id
    GET    /todos/:id    fetch one todo
    GET    /todos        list all todos
    DELETE /todos/:id    delete a todo, returns {"deleted": true}
"""

MISSING_ID = "507f191e810c19729de860ea"

def test_cases(grader):
    check = grader.assertions

    # Creating
    todo_id = check.assert_response_body_equals_without_id(
        15,
        "/todos",
        "POST",
        {"title": "Write lab report", "done": False},
        {"title": "Write lab report", "done": False},
    )
    check.assert_response_status(10, "/todos", "POST", {"done": False}, 400)
    check.assert_response_status(5, "/todos", "POST", {"title": "", "done": False}, 400)

    # Reading
    if todo_id:
        check.assert_response_body_equals(
            15,
            f"/todos/{todo_id}",
            "GET",
            "",
            {"_id": todo_id, "title": "Write lab report", "done": False},
        )
    else:
        grader.deduct_points(15, "GET /todos/:id", "Skipped because creating a todo failed.")
    check.assert_response_status(10, f"/todos/{MISSING_ID}", "GET", "", 404)
    check.assert_response_status(5, "/todos/not-an-id", "GET", "", 400)

    # Listing
    def list_titles():
        status, _ = check.request("/todos")
        if status != 200:
            raise ValueError(f"GET /todos returned {status}")
        return sorted(todo["title"] for todo in grader.db["todos"].find())

    check.assert_deep_equals(10, "GET /todos", list_titles, ["Write lab report"])

    # Deleting
    if todo_id:
        check.assert_response_body_equals(
            10,
            f"/todos/{todo_id}",
            "DELETE",
            "",
            {"deleted": True},
        )
        check.assert_deep_equals(
            10,
            "DELETE /todos/:id removes the document",
            lambda: grader.db["todos"].count_documents({}),
            0,
        )
    else:
        grader.deduct_points(20, "DELETE /todos/:id", "Skipped because creating a todo failed.")
